"""Portal order processing: intake, state machine, preview gate and API facade."""

from lab_order_automation.orders.events import EventChannel, OrderEvent
from lab_order_automation.orders.intake import EligibilityRequest, OrderRequest, parse_order_request
from lab_order_automation.orders.orchestrator import OrderCancelled, OrderOrchestrator
from lab_order_automation.orders.registry import AutomationSession, Decision, SessionRegistry
from lab_order_automation.orders.service import OrderSubmissionService
from lab_order_automation.orders.state import ErrorOutcome, can_transition, error_outcome, validate_transition
from lab_order_automation.orders.store import OrderStore
from lab_order_automation.orders.validation import validate_order

__all__ = [
    "AutomationSession",
    "Decision",
    "EligibilityRequest",
    "ErrorOutcome",
    "EventChannel",
    "OrderCancelled",
    "OrderEvent",
    "OrderOrchestrator",
    "OrderRequest",
    "OrderStore",
    "OrderSubmissionService",
    "SessionRegistry",
    "can_transition",
    "error_outcome",
    "parse_order_request",
    "validate_order",
    "validate_transition",
]
