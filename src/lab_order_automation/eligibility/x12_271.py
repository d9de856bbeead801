"""X12 271 eligibility response decoder.

The decoder is a single linear fold over the segments. Each segment handler
may update the accumulated state or do nothing; a handler that trips over a
malformed segment is skipped and the fold continues, so callers always get a
best-effort partial result.

Two cursors drive address capture. ``in_patient`` turns on at the subscriber
name (NM1*IL). ``in_loop`` turns on at the first LS segment and stays on:
N3/N4/PER segments inside the 2120 loop belong to other entities (primary
care providers, transportation vendors, the managed-care plan) and must never
overwrite the subscriber's address or phone.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

from lab_order_automation.eligibility.x12 import X12Segment, split_segments
from lab_order_automation.models.eligibility import EligibilityResult, PlanCategory
from lab_order_automation.models.insurance import classify_plan_description
from lab_order_automation.models.patient import Address, PatientDemographics
from lab_order_automation.utils.exceptions import DecodeError

logger = logging.getLogger(__name__)

# EB01 codes that mean active coverage
ACTIVE_COVERAGE_CODES = {"1", "2", "3", "4"}

# EB04 insurance type codes for HMO plans
MANAGED_CARE_INSURANCE_TYPES = {"HM", "HN"}

AAA_REJECT_REASONS = {
    "15": "Required Application Data Missing",
    "41": "Authorization/Access Restrictions",
    "42": "Unable to Respond at Current Time",
    "43": "Invalid/Missing Provider Identification",
    "58": "Invalid/Missing Date-of-Birth",
    "62": "Date of Service Not Within Allowable Inquiry Period",
    "72": "Invalid/Missing Subscriber/Insured ID",
    "73": "Invalid/Missing Subscriber/Insured Name",
    "75": "Subscriber/Insured Not Found",
    "76": "Duplicate Subscriber/Insured ID Number",
    "79": "Invalid Participant Identification",
}


@dataclass
class _DecodeState:
    in_patient: bool = False
    in_loop: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    member_id: Optional[str] = None
    dob: Optional[date] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    is_eligible: bool = False
    plan_category: PlanCategory = PlanCategory.UNKNOWN
    plan_description: Optional[str] = None
    coverage_segments: list[str] = field(default_factory=list)
    rejections: list[str] = field(default_factory=list)


def _none_if_blank(value: str) -> Optional[str]:
    value = value.strip()
    return value or None


def _on_ls(segment: X12Segment, state: _DecodeState) -> None:
    if not state.in_loop:
        logger.debug("Entered LS loop - ignoring subsequent N3/N4/PER segments")
    state.in_loop = True


def _on_nm1(segment: X12Segment, state: _DecodeState) -> None:
    entity = segment.element(1)
    if entity == "PR":
        logger.debug("Payer: %s", segment.element(3))
        return
    if entity != "IL" or state.in_loop:
        return
    state.last_name = _none_if_blank(segment.element(3))
    state.first_name = _none_if_blank(segment.element(4))
    state.member_id = _none_if_blank(segment.element(9))
    state.in_patient = True
    logger.debug("Subscriber segment found (member_id=%s)", state.member_id)


def _in_patient_scope(state: _DecodeState) -> bool:
    return state.in_patient and not state.in_loop


def _on_n3(segment: X12Segment, state: _DecodeState) -> None:
    if not _in_patient_scope(state):
        return
    lines = [line for line in (segment.element(1).strip(), segment.element(2).strip()) if line]
    state.street = " ".join(lines) or None


def _on_n4(segment: X12Segment, state: _DecodeState) -> None:
    if not _in_patient_scope(state):
        return
    state.city = _none_if_blank(segment.element(1))
    state.state = _none_if_blank(segment.element(2))
    state.postal_code = _none_if_blank(segment.element(3))


def _on_per(segment: X12Segment, state: _DecodeState) -> None:
    if not _in_patient_scope(state):
        return
    # PER*IC*name*TE*number[*EX*ext...]: qualifier/number pairs start at PER03
    for position in range(3, len(segment.elements), 2):
        if segment.element(position) == "TE" and segment.element(position + 1):
            state.phone = segment.element(position + 1).strip()
            return


def _on_dmg(segment: X12Segment, state: _DecodeState) -> None:
    if state.in_loop or state.dob is not None:
        return
    raw = segment.element(2).strip()
    if segment.element(1) not in ("D8", "") or len(raw) != 8:
        return
    # ValueError on an impossible date is caught by the fold
    state.dob = datetime.strptime(raw, "%Y%m%d").date()


def _on_eb(segment: X12Segment, state: _DecodeState) -> None:
    code = segment.element(1).strip()
    if code not in ACTIVE_COVERAGE_CODES:
        return

    state.is_eligible = True
    state.coverage_segments.append(segment.render())

    description = _none_if_blank(segment.element(5))
    if description is None:
        fallback = segment.element(3).strip()
        # EB03 is normally a service type code; some payers put the plan name there
        if fallback and not fallback.isdigit():
            description = fallback

    if state.plan_description is None and description:
        state.plan_description = description

    if state.plan_category is not PlanCategory.UNKNOWN:
        return

    kind = classify_plan_description(description)
    if kind == "ffs":
        state.plan_category = PlanCategory.TRADITIONAL_FFS
    elif kind == "managed" or segment.element(4).strip() in MANAGED_CARE_INSURANCE_TYPES:
        state.plan_category = PlanCategory.MANAGED_CARE


def _on_aaa(segment: X12Segment, state: _DecodeState) -> None:
    if segment.element(1) != "N":
        return
    code = segment.element(3).strip()
    if not code:
        return
    reason = AAA_REJECT_REASONS.get(code, "Unknown reason")
    state.rejections.append(f"{code}: {reason}")
    logger.warning("271 rejection AAA*%s (%s)", code, reason)


_HANDLERS: dict[str, Callable[[X12Segment, _DecodeState], None]] = {
    "LS": _on_ls,
    "NM1": _on_nm1,
    "N3": _on_n3,
    "N4": _on_n4,
    "PER": _on_per,
    "DMG": _on_dmg,
    "EB": _on_eb,
    "AAA": _on_aaa,
}


def decode_271(raw_payload: str) -> EligibilityResult:
    """Decode a 271 response into an EligibilityResult.

    Args:
        raw_payload: 271 interchange text

    Returns:
        EligibilityResult; fields absent from the payload are None

    Raises:
        DecodeError: If the payload contains no X12 segments at all

    Example:
        >>> result = decode_271("...NM1*IL*1*MONTOYA*JEREMY****MI*123~DMG*D8*19840717~EB*1**30**TARGETED ADULT MEDICAID~...")
        >>> result.plan_category
        <PlanCategory.TRADITIONAL_FFS: 'TraditionalFeeForService'>
    """
    segments = split_segments(raw_payload or "")
    if not segments:
        raise DecodeError("Response payload contains no X12 segments")

    state = _DecodeState()
    for segment in segments:
        handler = _HANDLERS.get(segment.segment_id)
        if handler is None:
            continue
        try:
            handler(segment, state)
        except (ValueError, IndexError) as e:
            logger.debug("Skipping malformed %s segment: %s", segment.segment_id, e)

    address = Address(state.street, state.city, state.state, state.postal_code)
    demographics = PatientDemographics(
        first_name=state.first_name,
        last_name=state.last_name,
        dob=state.dob,
        external_id=state.member_id,
        address=None if address.is_empty() else address,
        phone=state.phone,
    )

    logger.info(
        "Decoded 271: eligible=%s plan=%s segments=%d rejections=%d",
        state.is_eligible,
        state.plan_category.value,
        len(segments),
        len(state.rejections),
    )

    return EligibilityResult(
        is_eligible=state.is_eligible,
        plan_category=state.plan_category,
        verified_id=state.member_id,
        verified_demographics=demographics,
        raw_payload=raw_payload,
        plan_description=state.plan_description,
        coverage_segments=state.coverage_segments,
        rejections=state.rejections,
    )
