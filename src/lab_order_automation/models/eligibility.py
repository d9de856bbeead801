"""Eligibility inquiry identities and the decoded 271 result."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from lab_order_automation.models.patient import PatientDemographics


class PlanCategory(Enum):
    """Coverage category derived from the payer's plan description."""

    TRADITIONAL_FFS = "TraditionalFeeForService"
    MANAGED_CARE = "ManagedCare"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ProviderIdentity:
    """Information receiver of the inquiry (NM1*1P)."""

    name: str
    npi: str


@dataclass(frozen=True)
class PayerIdentity:
    """Information source of the inquiry (NM1*PR)."""

    name: str
    payer_id: str


@dataclass(frozen=True)
class InterchangeIdentity:
    """Interchange sender/receiver IDs placed in ISA06/ISA08 and GS02/GS03."""

    sender_id: str
    receiver_id: str


@dataclass
class EligibilityResult:
    """Structured 271 eligibility response.

    ``is_eligible`` is only ever True when a coverage segment (EB with an
    active-coverage code) was seen. Demographic fields absent from the
    payload stay None.

    Attributes:
        is_eligible: Active coverage was reported
        plan_category: TraditionalFeeForService, ManagedCare or Unknown
        verified_id: Member ID as held by the payer
        verified_demographics: Subscriber demographics as held by the payer
        raw_payload: The 271 text, kept for audit
        plan_description: Plan text of the first coverage segment
        coverage_segments: Raw EB segments that indicated active coverage
        rejections: AAA reject reason codes
    """

    is_eligible: bool
    plan_category: PlanCategory
    verified_id: Optional[str]
    verified_demographics: PatientDemographics
    raw_payload: str
    plan_description: Optional[str] = None
    coverage_segments: list[str] = field(default_factory=list)
    rejections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "isEligible": self.is_eligible,
            "planCategory": self.plan_category.value,
            "verifiedId": self.verified_id,
            "planDescription": self.plan_description,
            "verifiedDemographics": self.verified_demographics.to_dict(),
            "rejections": list(self.rejections),
        }
