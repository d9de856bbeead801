"""Eligibility service: 270 encode, clearinghouse exchange, 271 decode.

No caching and no retries. Each call generates a fresh control number and
payload ID, and sends at most one inquiry.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from lab_order_automation.config.manager import get_clearinghouse_credentials
from lab_order_automation.config.schema import Config
from lab_order_automation.eligibility.transport import ClearinghouseTransport
from lab_order_automation.eligibility.x12 import render_interchange
from lab_order_automation.eligibility.x12_270 import encode_270, generate_control_number
from lab_order_automation.eligibility.x12_271 import decode_271
from lab_order_automation.logging_audit import log_audit_event
from lab_order_automation.models.eligibility import (
    EligibilityResult,
    InterchangeIdentity,
    PayerIdentity,
    ProviderIdentity,
)
from lab_order_automation.models.patient import PatientDemographics
from lab_order_automation.transport.http_client import create_session
from lab_order_automation.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class EligibilityService:
    """Checks a patient's coverage with the configured payer.

    Args:
        config: Application configuration
        transport: Clearinghouse transport; built from config when omitted
        clock: Local wall-clock source used for control numbers and dates

    Example:
        >>> service = EligibilityService(load_config())
        >>> result = service.check_eligibility(patient)
        >>> result.is_eligible
        True
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[ClearinghouseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.transport = transport or ClearinghouseTransport(
            config.clearinghouse,
            create_session(config.transport.max_connections, config.transport.verify_tls),
        )
        self.clock = clock
        self.provider = ProviderIdentity(config.provider.name, config.provider.npi)
        self.payer = PayerIdentity(config.payer.name, config.payer.payer_id)
        self.interchange = InterchangeIdentity(config.clearinghouse.sender_id, config.clearinghouse.receiver_id)

    def check_eligibility(self, patient: PatientDemographics) -> EligibilityResult:
        """Verify eligibility and fetch demographics as the payer holds them.

        Args:
            patient: Caller-supplied demographics; name and date of birth required

        Returns:
            Decoded EligibilityResult

        Raises:
            CredentialsMissing: If clearinghouse credentials are not configured
            ValidationError: If name or date of birth is missing
            TransportTimeout: If the clearinghouse does not answer in time
            TransportRejected: If the clearinghouse rejects the request
            PayloadNotFound: If the response carries no payload
            DecodeError: If the payload contains no X12 segments
        """
        username, password = get_clearinghouse_credentials(self.config)

        if not patient.has_complete_identity():
            raise ValidationError("Eligibility check requires first name, last name and date of birth")

        logger.info("Checking eligibility for Patient: %s", patient.full_name)
        start = time.monotonic()

        now = self.clock()
        control_number = generate_control_number(now)
        segments = encode_270(patient, self.provider, self.payer, self.interchange, control_number, now)
        edi_270 = render_interchange(segments)
        logger.debug("Generated 270 (control %s)", control_number)

        try:
            raw_271 = self.transport.send(edi_270, username, password)
            result = decode_271(raw_271)
        except Exception as e:
            log_audit_event(
                "ELIGIBILITY_CHECKED",
                {
                    "status": "failure",
                    "control_number": control_number,
                    "duration": time.monotonic() - start,
                    "error_message": f"{type(e).__name__}: {e}",
                },
            )
            raise

        log_audit_event(
            "ELIGIBILITY_CHECKED",
            {
                "status": "success",
                "control_number": control_number,
                "eligible": result.is_eligible,
                "plan_category": result.plan_category.value,
                "duration": time.monotonic() - start,
            },
        )
        logger.info(
            "Eligibility check complete: %s (%s)",
            "ELIGIBLE" if result.is_eligible else "NOT ELIGIBLE",
            result.plan_category.value,
        )
        return result
