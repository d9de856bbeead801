"""CAQH CORE real-time envelope (SOAP 1.2) build and payload extraction.

The request carries a WS-Security UsernameToken and a
``COREEnvelopeRealTimeRequest`` body whose children are unqualified. The
EDI text travels in a CDATA section of ``Payload``.

Clearinghouse deployments do not agree on how the response ``Payload`` is
qualified (no namespace, the CORE namespace under various prefixes, or a
default namespace), so extraction tries several shapes before giving up.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from lxml import etree

from lab_order_automation.utils.exceptions import PayloadNotFound, TransportRejected

logger = logging.getLogger(__name__)

SOAP12_NS = "http://www.w3.org/2003/05/soap-envelope"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
CORE_NS = "http://www.caqh.org/SOAP/WSDL/CORERule2.2.0.xsd"

PAYLOAD_TYPE_270 = "X12_270_Request_005010X279A1"
PAYLOAD_TYPE_271 = "X12_271_Response_005010X279A1"
CORE_RULE_VERSION = "2.2.0"

CONTENT_TYPE = "application/soap+xml; charset=utf-8;action=RealTimeTransaction;"
SOAP_ACTION = "RealTimeTransaction"

_NSMAP = {"soapenv": SOAP12_NS, "core": CORE_NS}

# Tried in order; the first non-empty match wins
_PAYLOAD_XPATHS = [
    "/soapenv:Envelope/soapenv:Body/*/Payload",
    "/soapenv:Envelope/soapenv:Body/*/core:Payload",
    "//Payload",
    "//core:Payload",
    "//*[local-name()='Payload']",
]

# Last resort for responses that are not well-formed XML
_PAYLOAD_PATTERNS = [
    re.compile(r"<Payload[^>]*>\s*<!\[CDATA\[(.*?)\]\]>\s*</Payload>", re.S),
    re.compile(r"<Payload[^>]*>(.*?)</Payload>", re.S),
    re.compile(r"<ns1:Payload[^>]*>\s*<!\[CDATA\[(.*?)\]\]>\s*</ns1:Payload>", re.S),
    re.compile(r"<ns1:Payload[^>]*>(.*?)</ns1:Payload>", re.S),
    re.compile(r"<ns:Payload[^>]*>(.*?)</ns:Payload>", re.S),
    re.compile(r"<ns2:Payload[^>]*>(.*?)</ns2:Payload>", re.S),
]

_SAFE_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


@dataclass(frozen=True)
class CoreRequest:
    """A built request envelope.

    Attributes:
        payload_id: UUID placed in PayloadID
        timestamp: UTC timestamp placed in TimeStamp
        xml: Serialized envelope
    """

    payload_id: str
    timestamp: str
    xml: str


def _core_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_request_envelope(
    edi_payload: str,
    username: str,
    password: str,
    sender_id: str,
    receiver_id: str,
    payload_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CoreRequest:
    """Wrap a 270 in a CORE real-time request envelope.

    Args:
        edi_payload: 270 interchange text
        username: Web-service username
        password: Web-service password
        sender_id: CORE SenderID
        receiver_id: CORE ReceiverID
        payload_id: PayloadID; a fresh UUID when omitted
        now: Timestamp source; current UTC time when omitted

    Returns:
        CoreRequest with the serialized envelope
    """
    payload_id = payload_id or str(uuid.uuid4())
    timestamp = _core_timestamp(now)

    envelope = etree.Element(etree.QName(SOAP12_NS, "Envelope"), nsmap={"soapenv": SOAP12_NS})
    header = etree.SubElement(envelope, etree.QName(SOAP12_NS, "Header"))
    security = etree.SubElement(header, etree.QName(WSSE_NS, "Security"), nsmap={"wsse": WSSE_NS})
    token = etree.SubElement(security, etree.QName(WSSE_NS, "UsernameToken"))
    etree.SubElement(token, etree.QName(WSSE_NS, "Username")).text = username
    etree.SubElement(token, etree.QName(WSSE_NS, "Password")).text = password

    body = etree.SubElement(envelope, etree.QName(SOAP12_NS, "Body"))
    request = etree.SubElement(body, etree.QName(CORE_NS, "COREEnvelopeRealTimeRequest"), nsmap={"ns1": CORE_NS})

    # Children are unqualified
    for tag, value in (
        ("PayloadType", PAYLOAD_TYPE_270),
        ("ProcessingMode", "RealTime"),
        ("PayloadID", payload_id),
        ("TimeStamp", timestamp),
        ("SenderID", sender_id),
        ("ReceiverID", receiver_id),
        ("CORERuleVersion", CORE_RULE_VERSION),
    ):
        etree.SubElement(request, tag).text = value
    etree.SubElement(request, "Payload").text = etree.CDATA(edi_payload)

    xml = etree.tostring(envelope, xml_declaration=True, encoding="UTF-8").decode("utf-8")
    return CoreRequest(payload_id=payload_id, timestamp=timestamp, xml=xml)


def mask_credentials(envelope_xml: str) -> str:
    """Replace the UsernameToken password with asterisks."""
    return re.sub(
        r"(<(?:\w+:)?Password[^>]*>)(.*?)(</(?:\w+:)?Password>)",
        r"\1********\3",
        envelope_xml,
        flags=re.S,
    )


def _check_fault(root: etree._Element) -> None:
    faults = root.xpath("//*[local-name()='Fault']")
    if faults:
        reason = " ".join(
            t.strip() for t in faults[0].xpath(".//*[local-name()='Text' or local-name()='faultstring']/text()")
        )
        raise TransportRejected(f"Clearinghouse returned SOAP fault: {reason or 'no reason given'}")

    codes = root.xpath("//*[local-name()='ErrorCode']/text()")
    if codes and codes[0].strip() and codes[0].strip().lower() != "success":
        messages = root.xpath("//*[local-name()='ErrorMessage']/text()")
        message = messages[0].strip() if messages else ""
        raise TransportRejected(f"Clearinghouse error {codes[0].strip()}: {message}".rstrip(": "))


def extract_payload(response_text: str) -> str:
    """Extract the EDI payload from a CORE response envelope.

    Args:
        response_text: Response body

    Returns:
        The payload text, stripped

    Raises:
        TransportRejected: If the envelope is a SOAP fault or carries a CORE error code
        PayloadNotFound: If no envelope shape yields a payload

    Example:
        >>> extract_payload('<Envelope><Body><R><Payload><![CDATA[ISA*00~]]></Payload></R></Body></Envelope>')
        'ISA*00~'
    """
    try:
        root = etree.fromstring(response_text.encode("utf-8"), parser=_SAFE_PARSER)
    except etree.XMLSyntaxError as e:
        logger.debug("Response is not well-formed XML (%s); trying text patterns", e)
        root = None

    if root is not None:
        _check_fault(root)
        for path in _PAYLOAD_XPATHS:
            for element in root.xpath(path, namespaces=_NSMAP):
                text = (element.text or "").strip()
                if text:
                    logger.debug("Payload found with %s", path)
                    return text

    for pattern in _PAYLOAD_PATTERNS:
        match = pattern.search(response_text)
        if match and match.group(1).strip():
            logger.debug("Payload found with text pattern %s", pattern.pattern)
            return match.group(1).strip()

    logger.error("No payload in response (first 1000 chars): %s", response_text[:1000])
    raise PayloadNotFound("No X12 271 payload found in the clearinghouse response")


def build_response_envelope(edi_payload: str, payload_id: str, sender_id: str, receiver_id: str, prefixed: bool = False) -> str:
    """Build a CORE real-time response envelope carrying a 271.

    ``prefixed`` qualifies the children with the ``ns1`` prefix instead of
    leaving them unqualified; both shapes occur in the wild.
    """
    envelope = etree.Element(etree.QName(SOAP12_NS, "Envelope"), nsmap={"soapenv": SOAP12_NS})
    etree.SubElement(envelope, etree.QName(SOAP12_NS, "Header"))
    body = etree.SubElement(envelope, etree.QName(SOAP12_NS, "Body"))
    response = etree.SubElement(body, etree.QName(CORE_NS, "COREEnvelopeRealTimeResponse"), nsmap={"ns1": CORE_NS})

    def child(tag: str) -> etree._Element:
        return etree.SubElement(response, etree.QName(CORE_NS, tag) if prefixed else tag)

    for tag, value in (
        ("PayloadType", PAYLOAD_TYPE_271),
        ("ProcessingMode", "RealTime"),
        ("PayloadID", payload_id),
        ("TimeStamp", _core_timestamp()),
        ("SenderID", sender_id),
        ("ReceiverID", receiver_id),
        ("CORERuleVersion", CORE_RULE_VERSION),
    ):
        child(tag).text = value
    child("Payload").text = etree.CDATA(edi_payload)
    child("ErrorCode").text = "Success"
    child("ErrorMessage").text = "None"

    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8").decode("utf-8")


def parse_request_envelope(request_text: str) -> dict[str, Optional[str]]:
    """Read the fields of a CORE request envelope.

    Returns:
        Dict with username, payload_type, payload_id, sender_id, receiver_id and payload

    Raises:
        PayloadNotFound: If the request carries no payload
    """
    root = etree.fromstring(request_text.encode("utf-8"), parser=_SAFE_PARSER)

    def first(local_name: str) -> Optional[str]:
        values = root.xpath(f"//*[local-name()='{local_name}']/text()")
        return values[0].strip() if values else None

    return {
        "username": first("Username"),
        "payload_type": first("PayloadType"),
        "payload_id": first("PayloadID"),
        "sender_id": first("SenderID"),
        "receiver_id": first("ReceiverID"),
        "payload": extract_payload(request_text),
    }
