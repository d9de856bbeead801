"""Data models for Lab Order Automation."""

from lab_order_automation.models.eligibility import (
    EligibilityResult,
    InterchangeIdentity,
    PayerIdentity,
    PlanCategory,
    ProviderIdentity,
)
from lab_order_automation.models.order import (
    AutomationLogEntry,
    LabTest,
    OrderState,
    PortalOrder,
    ProviderReference,
)
from lab_order_automation.models.patient import Address, PatientDemographics

__all__ = [
    "Address",
    "AutomationLogEntry",
    "EligibilityResult",
    "InterchangeIdentity",
    "LabTest",
    "OrderState",
    "PatientDemographics",
    "PayerIdentity",
    "PlanCategory",
    "PortalOrder",
    "ProviderIdentity",
    "ProviderReference",
]
