"""X12 270 eligibility inquiry encoder (005010X279A1).

The encoder is a pure function of its inputs. Dates and times come from the
caller-supplied ``now``, which must be local wall-clock time: the clearinghouse
rejects inquiries whose control dates look like they are in the future, which
happens when UTC is used late in the local day.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from lab_order_automation.eligibility.x12 import (
    COMPONENT_SEPARATOR,
    REPETITION_SEPARATOR,
    X12Segment,
    clean_element,
    render_interchange,
)
from lab_order_automation.models.eligibility import InterchangeIdentity, PayerIdentity, ProviderIdentity
from lab_order_automation.models.patient import PatientDemographics

logger = logging.getLogger(__name__)

IMPLEMENTATION_REFERENCE = "005010X279A1"
TRANSACTION_SET_CONTROL = "0001"

_control_lock = threading.Lock()
_last_control = -1


def generate_control_number(now: Optional[datetime] = None) -> str:
    """Nine-digit interchange control number from the clock.

    Numbers are strictly increasing within the process, so two inquiries
    built in the same millisecond still get distinct control numbers.

    Example:
        >>> len(generate_control_number())
        9
    """
    global _last_control
    now = now or datetime.now()
    candidate = int(now.timestamp() * 1000) % 1_000_000_000
    with _control_lock:
        if candidate <= _last_control:
            candidate = _last_control + 1
        _last_control = candidate % 1_000_000_000
        return f"{_last_control:09d}"


def _pad15(value: str) -> str:
    return clean_element(value)[:15].ljust(15)


def encode_270(
    patient: PatientDemographics,
    provider: ProviderIdentity,
    payer: PayerIdentity,
    interchange: InterchangeIdentity,
    control_number: str,
    now: datetime,
) -> list[X12Segment]:
    """Encode an eligibility inquiry for one subscriber.

    Args:
        patient: Subscriber demographics; name and date of birth are sent,
            plus the member ID when known
        provider: Information receiver (NM1*1P)
        payer: Information source (NM1*PR)
        interchange: ISA/GS sender and receiver IDs
        control_number: Nine-digit control number used in ISA13, GS06, GE02,
            IEA02, BHT03 and TRN02
        now: Local wall-clock time for all date/time elements

    Returns:
        Segments ISA through IEA in transmission order

    Example:
        >>> segments = encode_270(patient, provider, payer, ids, "123456789", datetime.now())
        >>> segments[2].render()
        'ST*270*0001*005010X279A1'
    """
    yymmdd = now.strftime("%y%m%d")
    ccyymmdd = now.strftime("%Y%m%d")
    hhmm = now.strftime("%H%M")

    header = [
        X12Segment(
            "ISA",
            (
                "00",
                " " * 10,
                "00",
                " " * 10,
                "ZZ",
                _pad15(interchange.sender_id),
                "01",
                _pad15(interchange.receiver_id),
                yymmdd,
                hhmm,
                REPETITION_SEPARATOR,
                "00501",
                control_number,
                "0",
                "P",
                COMPONENT_SEPARATOR,
            ),
        ),
        X12Segment.of(
            "GS",
            "HS",
            interchange.sender_id,
            interchange.receiver_id,
            ccyymmdd,
            hhmm,
            control_number,
            "X",
            IMPLEMENTATION_REFERENCE,
        ),
    ]

    transaction = [
        X12Segment.of("ST", "270", TRANSACTION_SET_CONTROL, IMPLEMENTATION_REFERENCE),
        X12Segment.of(
            "BHT", "0022", "13", f"{provider.name.replace(' ', '')}-{control_number}", ccyymmdd, hhmm
        ),
        # 2000A/2100A information source
        X12Segment.of("HL", "1", "", "20", "1"),
        X12Segment.of("NM1", "PR", "2", payer.name, "", "", "", "", "PI", payer.payer_id),
        # 2000B/2100B information receiver
        X12Segment.of("HL", "2", "1", "21", "1"),
        X12Segment.of("NM1", "1P", "2", provider.name, "", "", "", "", "XX", provider.npi),
        # 2000C/2100C subscriber
        X12Segment.of("HL", "3", "2", "22", "0"),
        X12Segment.of("TRN", "1", control_number, provider.npi, "ELIGIBILITY"),
    ]

    last = (patient.last_name or "").upper()
    first = (patient.first_name or "").upper()
    if patient.external_id:
        transaction.append(X12Segment.of("NM1", "IL", "1", last, first, "", "", "", "MI", patient.external_id))
    else:
        transaction.append(X12Segment.of("NM1", "IL", "1", last, first))

    if patient.dob is not None:
        transaction.append(X12Segment.of("DMG", "D8", patient.dob.strftime("%Y%m%d")))
        transaction.append(X12Segment.of("DTP", "291", "RD8", f"{ccyymmdd}-{ccyymmdd}"))

    # 30 = Health Benefit Plan Coverage
    transaction.append(X12Segment.of("EQ", "30"))

    # SE01 counts ST through SE inclusive
    transaction.append(X12Segment.of("SE", str(len(transaction) + 1), TRANSACTION_SET_CONTROL))

    trailer = [
        X12Segment.of("GE", "1", control_number),
        X12Segment.of("IEA", "1", control_number),
    ]

    segments = header + transaction + trailer
    logger.debug("Encoded 270 with %d segments (control %s)", len(segments), control_number)
    return segments


def encode_270_text(
    patient: PatientDemographics,
    provider: ProviderIdentity,
    payer: PayerIdentity,
    interchange: InterchangeIdentity,
    control_number: str,
    now: datetime,
) -> str:
    """``encode_270`` rendered as interchange text."""
    return render_interchange(encode_270(patient, provider, payer, interchange, control_number, now))
