"""Portal order data model.

A PortalOrder is the audit record of one automation run. It is created on
intake, mutated only by the order orchestrator, and never deleted: it ends in
Submitted, Cancelled or Failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from lab_order_automation.models.eligibility import EligibilityResult
from lab_order_automation.models.patient import PatientDemographics

logger = logging.getLogger(__name__)


class OrderState(Enum):
    """States of the order state machine."""

    INTAKE = "Intake"
    ENRICHING_DEMOGRAPHICS = "EnrichingDemographics"
    LOGGING_IN = "LoggingIn"
    NAVIGATING_TO_ORDER_FORM = "NavigatingToOrderForm"
    FILLING_FORM = "FillingForm"
    AWAITING_PREVIEW_CONFIRMATION = "AwaitingPreviewConfirmation"
    SUBMITTING = "Submitting"
    SUBMITTED = "Submitted"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.SUBMITTED, OrderState.CANCELLED, OrderState.FAILED)

    @property
    def status(self) -> str:
        """Observable status reported to API clients."""
        return _OBSERVABLE_STATUS[self]


_OBSERVABLE_STATUS = {
    OrderState.INTAKE: "processing",
    OrderState.ENRICHING_DEMOGRAPHICS: "processing",
    OrderState.LOGGING_IN: "processing",
    OrderState.NAVIGATING_TO_ORDER_FORM: "processing",
    OrderState.FILLING_FORM: "processing",
    OrderState.AWAITING_PREVIEW_CONFIRMATION: "preview",
    OrderState.SUBMITTING: "confirmed",
    OrderState.SUBMITTED: "submitted",
    OrderState.CANCELLED: "cancelled",
    OrderState.FAILED: "failed",
}


@dataclass(frozen=True)
class LabTest:
    """A requested lab test.

    Attributes:
        code: Portal test code (e.g. "322000")
        name: Test name (e.g. "Comprehensive Metabolic Panel")
    """

    code: str
    name: str

    @property
    def search_text(self) -> str:
        """Text typed into a portal's test search box."""
        return self.name or self.code


@dataclass(frozen=True)
class ProviderReference:
    """Ordering provider of the lab order."""

    name: str
    npi: Optional[str] = None


@dataclass(frozen=True)
class AutomationLogEntry:
    """One line of an order's automation history."""

    timestamp: datetime
    state: OrderState
    message: str
    level: str = "info"

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "state": self.state.value,
            "message": self.message,
            "level": self.level,
        }


@dataclass
class PortalOrder:
    """Lab order being driven through a portal.

    Attributes:
        order_id: Unique order identifier
        portal: Portal profile name ("labcorp", "quest")
        provider: Ordering provider
        patient: Patient demographics (merged with verified data once enriched)
        tests: Requested tests, never empty
        diagnosis_codes: ICD-10 codes, never empty
        special_instructions: Free text for the lab
        fallback_phone: Phone from another system of record, used when the
            payer returns none
        status: Current state
        retry_count: Transient-failure retries consumed
        max_retries: Retry bound for this order
        created_at: Intake time
        submitted_at: Time the portal accepted the order
        confirmation_id: Portal confirmation number
        last_error: Message of the most recent error
        preview_artifact: Screenshot reference of the filled form
        failure_artifact: Screenshot reference captured on failure
        eligibility: Eligibility result, when the lookup succeeded
        history: Automation log
    """

    order_id: str
    portal: str
    provider: ProviderReference
    patient: PatientDemographics
    tests: list[LabTest]
    diagnosis_codes: list[str]
    special_instructions: Optional[str] = None
    fallback_phone: Optional[str] = None
    status: OrderState = OrderState.INTAKE
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=datetime.now)
    submitted_at: Optional[datetime] = None
    confirmation_id: Optional[str] = None
    last_error: Optional[str] = None
    preview_artifact: Optional[str] = None
    failure_artifact: Optional[str] = None
    eligibility: Optional[EligibilityResult] = None
    history: list[AutomationLogEntry] = field(default_factory=list)

    @property
    def observable_status(self) -> str:
        return self.status.status

    @property
    def diagnosis_list(self) -> str:
        return ", ".join(self.diagnosis_codes)

    def log(self, message: str, level: str = "info") -> AutomationLogEntry:
        entry = AutomationLogEntry(datetime.now(), self.status, message, level)
        self.history.append(entry)
        return entry

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "portal": self.portal,
            "status": self.observable_status,
            "state": self.status.value,
            "provider": {"name": self.provider.name, "npi": self.provider.npi},
            "patient": self.patient.to_dict(),
            "tests": [{"code": t.code, "name": t.name} for t in self.tests],
            "diagnosisCodes": list(self.diagnosis_codes),
            "specialInstructions": self.special_instructions,
            "retryCount": self.retry_count,
            "createdAt": self.created_at.isoformat(),
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "confirmationId": self.confirmation_id,
            "lastError": self.last_error,
            "previewArtifact": self.preview_artifact,
            "failureArtifact": self.failure_artifact,
            "eligibility": self.eligibility.to_dict() if self.eligibility else None,
        }
