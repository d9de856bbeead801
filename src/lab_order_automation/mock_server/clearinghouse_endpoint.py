"""Mock CAQH CORE real-time endpoint that answers a 270 with a 271.

The 271 echoes the subscriber name, member ID and date of birth from the
inquiry and adds coverage, plan description, address and phone from the
configured behavior. ``build_271_echo`` is also used by tests as the
transport echo for encode/decode round trips.
"""

import logging
import random
import time
import uuid
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from flask import Blueprint, Response, current_app, request
from lxml import etree

from lab_order_automation.eligibility.core_envelope import build_response_envelope, parse_request_envelope
from lab_order_automation.eligibility.x12 import (
    COMPONENT_SEPARATOR,
    REPETITION_SEPARATOR,
    X12Segment,
    render_interchange,
    split_segments,
)
from lab_order_automation.mock_server.config import ClearinghouseBehavior, MockServerConfig, PayloadStyle
from lab_order_automation.utils.exceptions import PayloadNotFound

logger = logging.getLogger(__name__)

clearinghouse_bp = Blueprint("clearinghouse", __name__)

SOAP_CONTENT_TYPE = "application/soap+xml; charset=utf-8"


def _first(
    segments: list[X12Segment], segment_id: str, qualifier: Optional[str] = None
) -> Optional[X12Segment]:
    for segment in segments:
        if segment.segment_id == segment_id and (qualifier is None or segment.element(1) == qualifier):
            return segment
    return None


def build_271_echo(
    edi_270: str,
    behavior: Optional[ClearinghouseBehavior] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build a 271 answering a 270.

    Args:
        edi_270: Inquiry interchange text
        behavior: Coverage, plan and contact data to answer with
        now: Response timestamp; current local time when omitted

    Returns:
        271 interchange text

    Example:
        >>> raw_271 = build_271_echo(edi_270, ClearinghouseBehavior(plan_description="MOLINA HEALTHCARE"))
        >>> decode_271(raw_271).plan_category
        <PlanCategory.MANAGED_CARE: 'ManagedCare'>
    """
    behavior = behavior or ClearinghouseBehavior()
    now = now or datetime.now()
    segments = split_segments(edi_270)

    isa = _first(segments, "ISA")
    control_number = isa.element(13).strip() if isa else f"{int(time.time()) % 1_000_000_000:09d}"
    sender = isa.element(6) if isa else "SENDER".ljust(15)
    receiver = isa.element(8) if isa else "RECEIVER".ljust(15)
    payer = _first(segments, "NM1", "PR")
    provider = _first(segments, "NM1", "1P")
    subscriber = _first(segments, "NM1", "IL")
    dmg = _first(segments, "DMG")
    trn = _first(segments, "TRN")

    last_name = subscriber.element(3) if subscriber else ""
    first_name = subscriber.element(4) if subscriber else ""
    member_id = (subscriber.element(9) if subscriber else "") or behavior.member_id

    header = [
        X12Segment(
            "ISA",
            (
                "00",
                " " * 10,
                "00",
                " " * 10,
                "01",
                receiver,
                "ZZ",
                sender,
                now.strftime("%y%m%d"),
                now.strftime("%H%M"),
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
            "HB",
            receiver.strip(),
            sender.strip(),
            now.strftime("%Y%m%d"),
            now.strftime("%H%M"),
            control_number,
            "X",
            "005010X279A1",
        ),
    ]

    body = [
        X12Segment.of("ST", "271", "0001", "005010X279A1"),
        X12Segment.of(
            "BHT", "0022", "11", f"MOCK-{control_number}", now.strftime("%Y%m%d"), now.strftime("%H%M")
        ),
        X12Segment.of("HL", "1", "", "20", "1"),
        payer or X12Segment.of("NM1", "PR", "2", "MEDICAID UTAH", "", "", "", "", "PI", "UTMCD"),
        X12Segment.of("HL", "2", "1", "21", "1"),
        provider or X12Segment.of("NM1", "1P", "2", "PROVIDER"),
        X12Segment.of("HL", "3", "2", "22", "0"),
    ]
    if trn is not None:
        body.append(X12Segment.of("TRN", "2", trn.element(2), trn.element(3)))

    if not behavior.subscriber_found:
        body.append(X12Segment.of("NM1", "IL", "1", last_name, first_name))
        # 75 = Subscriber/Insured Not Found
        body.append(X12Segment.of("AAA", "N", "", "75", "C"))
    else:
        body.append(X12Segment.of("NM1", "IL", "1", last_name, first_name, "", "", "", "MI", member_id))
        if behavior.street:
            body.append(X12Segment.of("N3", behavior.street))
        if behavior.city or behavior.state or behavior.postal_code:
            body.append(X12Segment.of("N4", behavior.city, behavior.state, behavior.postal_code))
        if behavior.phone:
            body.append(X12Segment.of("PER", "IC", "", "TE", behavior.phone))
        if dmg is not None:
            body.append(X12Segment.of("DMG", "D8", dmg.element(2)))

        if behavior.coverage_active:
            body.append(
                X12Segment.of("EB", "1", "IND", "30", behavior.insurance_type or "", behavior.plan_description)
            )
        else:
            body.append(X12Segment.of("EB", "6", "IND", "30"))

        if behavior.include_loop_entities:
            body.extend(
                [
                    X12Segment.of("LS", "2120"),
                    X12Segment.of("NM1", "PRP", "2", "PRIMARY CARE CLINIC"),
                    X12Segment.of("N3", "999 OTHER ENTITY BLVD"),
                    X12Segment.of("N4", "PROVO", "UT", "84601"),
                    X12Segment.of("PER", "IC", "", "TE", "8015550000"),
                    X12Segment.of("LE", "2120"),
                ]
            )

    body.append(X12Segment.of("SE", str(len(body) + 1), "0001"))
    trailer = [X12Segment.of("GE", "1", control_number), X12Segment.of("IEA", "1", control_number)]

    return render_interchange(header + body + trailer)


def generate_soap_fault(code: str, reason: str) -> str:
    """SOAP 1.2 fault envelope."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope">
  <soap:Body>
    <soap:Fault>
      <soap:Code>
        <soap:Value>{escape(code)}</soap:Value>
      </soap:Code>
      <soap:Reason>
        <soap:Text xml:lang="en">{escape(reason)}</soap:Text>
      </soap:Reason>
    </soap:Fault>
  </soap:Body>
</soap:Envelope>"""


def fault_response(code: str, reason: str, status: int) -> tuple[Response, int]:
    logger.warning("SOAP Fault generated: %s - %s", code, reason)
    return Response(generate_soap_fault(code, reason), mimetype=SOAP_CONTENT_TYPE), status


@clearinghouse_bp.route("/TransactionService/rtx.svc", methods=["POST"])
def handle_realtime_transaction() -> tuple[Response, int]:
    """Answer a CORE real-time 270 request with a 271."""
    config: MockServerConfig = current_app.config["MOCK_CONFIG"]
    behavior = config.clearinghouse_behavior
    start = time.monotonic()

    try:
        fields = parse_request_envelope(request.get_data(as_text=True))
    except etree.XMLSyntaxError as e:
        return fault_response("soap:Sender", f"Malformed XML: {e}", 400)
    except PayloadNotFound:
        return fault_response("soap:Sender", "Request envelope carries no Payload", 400)

    logger.info(
        "270 received - PayloadID: %s, SenderID: %s, user: %s",
        fields["payload_id"],
        fields["sender_id"],
        fields["username"],
    )

    if behavior.response_delay_ms > 0:
        logger.debug("Simulating network delay: %dms", behavior.response_delay_ms)
        time.sleep(behavior.response_delay_ms / 1000.0)

    if behavior.failure_rate > 0 and random.random() < behavior.failure_rate:
        return fault_response("soap:Receiver", behavior.custom_fault_message or "Simulated clearinghouse failure", 500)

    edi_271 = build_271_echo(fields["payload"], behavior)
    envelope = build_response_envelope(
        edi_271,
        payload_id=fields["payload_id"] or str(uuid.uuid4()),
        sender_id=config.sender_id,
        receiver_id=config.receiver_id,
        prefixed=behavior.payload_style is PayloadStyle.PREFIXED,
    )

    logger.info(
        "271 sent - PayloadID: %s, ProcessingTime: %dms", fields["payload_id"], (time.monotonic() - start) * 1000
    )
    logger.debug("Full 271:\n%s", edi_271)
    return Response(envelope, mimetype=SOAP_CONTENT_TYPE), 200


def register_clearinghouse_endpoint(app, config: MockServerConfig) -> None:
    """Register the real-time endpoint at the configured path."""
    app.config["MOCK_CONFIG"] = config
    if clearinghouse_bp.name in app.blueprints:
        logger.debug("Clearinghouse endpoint already registered")
        return
    app.register_blueprint(clearinghouse_bp)
    if config.clearinghouse_endpoint != "/TransactionService/rtx.svc":
        app.add_url_rule(
            config.clearinghouse_endpoint,
            endpoint="clearinghouse_custom",
            view_func=handle_realtime_transaction,
            methods=["POST"],
        )
    logger.info("Registered clearinghouse endpoint: %s", config.clearinghouse_endpoint)
