"""Eligibility verification over X12 270/271 and the CORE real-time envelope."""

from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.eligibility.transport import ClearinghouseTransport
from lab_order_automation.eligibility.x12_270 import encode_270, encode_270_text, generate_control_number
from lab_order_automation.eligibility.x12_271 import decode_271

__all__ = [
    "ClearinghouseTransport",
    "EligibilityService",
    "decode_271",
    "encode_270",
    "encode_270_text",
    "generate_control_number",
]
