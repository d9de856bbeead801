"""Unit tests for the CAQH CORE real-time envelope."""

from datetime import datetime, timezone

import pytest
from lxml import etree

from lab_order_automation.eligibility.core_envelope import (
    CORE_NS,
    PAYLOAD_TYPE_270,
    SOAP12_NS,
    build_request_envelope,
    build_response_envelope,
    extract_payload,
    mask_credentials,
    parse_request_envelope,
)
from lab_order_automation.utils.exceptions import PayloadNotFound, TransportRejected

EDI = "ISA*00*          *00~ST*270*0001~SE*2*0001~"


class TestBuildRequestEnvelope:
    """Tests for build_request_envelope."""

    def test_envelope_fields(self):
        """Test that header, identifiers and payload are placed in the envelope."""
        # Arrange & Act
        request = build_request_envelope(
            EDI,
            username="user1",
            password="secret",
            sender_id="1161680",
            receiver_id="OFFALLY",
            payload_id="11111111-2222-3333-4444-555555555555",
            now=datetime(2025, 1, 15, 16, 30, tzinfo=timezone.utc),
        )

        # Assert
        root = etree.fromstring(request.xml.encode("utf-8"))
        assert root.tag == f"{{{SOAP12_NS}}}Envelope"
        assert root.xpath("//*[local-name()='Username']/text()") == ["user1"]
        body = root.find(f"{{{SOAP12_NS}}}Body/{{{CORE_NS}}}COREEnvelopeRealTimeRequest")
        assert body is not None
        assert body.findtext("PayloadType") == PAYLOAD_TYPE_270
        assert body.findtext("ProcessingMode") == "RealTime"
        assert body.findtext("PayloadID") == "11111111-2222-3333-4444-555555555555"
        assert body.findtext("TimeStamp") == "2025-01-15T16:30:00Z"
        assert body.findtext("SenderID") == "1161680"
        assert body.findtext("ReceiverID") == "OFFALLY"
        assert body.findtext("CORERuleVersion") == "2.2.0"
        assert body.findtext("Payload") == EDI
        assert "<![CDATA[" in request.xml

    def test_fresh_payload_id_per_request(self):
        """Test that omitted payload IDs are generated and unique."""
        # Arrange & Act
        first = build_request_envelope(EDI, "u", "p", "S", "R")
        second = build_request_envelope(EDI, "u", "p", "S", "R")

        # Assert
        assert first.payload_id != second.payload_id
        assert len(first.payload_id) == 36


class TestMaskCredentials:
    """Tests for mask_credentials."""

    def test_password_replaced(self):
        """Test that the password never appears in the masked envelope."""
        # Arrange
        request = build_request_envelope(EDI, "user1", "hunter2", "S", "R")

        # Act
        masked = mask_credentials(request.xml)

        # Assert
        assert "hunter2" not in masked
        assert "********" in masked
        assert "user1" in masked


class TestExtractPayload:
    """Tests for extract_payload across envelope variants."""

    def test_unqualified_payload(self):
        """Test extraction from an envelope with unqualified children."""
        # Arrange
        envelope = build_response_envelope(EDI, "pid", "OFFALLY", "1161680")

        # Act & Assert
        assert extract_payload(envelope) == EDI

    def test_prefixed_payload(self):
        """Test extraction when the children carry the CORE namespace prefix."""
        # Arrange
        envelope = build_response_envelope(EDI, "pid", "OFFALLY", "1161680", prefixed=True)

        # Act & Assert
        assert "ns1:Payload" in envelope
        assert extract_payload(envelope) == EDI

    def test_default_namespace_payload(self):
        """Test extraction when the CORE namespace is the default namespace."""
        # Arrange
        envelope = (
            f'<soap:Envelope xmlns:soap="{SOAP12_NS}"><soap:Body>'
            f'<COREEnvelopeRealTimeResponse xmlns="{CORE_NS}">'
            f"<Payload><![CDATA[{EDI}]]></Payload>"
            "</COREEnvelopeRealTimeResponse></soap:Body></soap:Envelope>"
        )

        # Act & Assert
        assert extract_payload(envelope) == EDI

    def test_malformed_xml_falls_back_to_patterns(self):
        """Test that a non-well-formed response still yields its payload."""
        # Arrange
        envelope = f"<Envelope><Body><Payload><![CDATA[{EDI}]]></Payload></Body>"

        # Act & Assert
        assert extract_payload(envelope) == EDI

    def test_soap_fault_raises_rejected(self):
        """Test that a SOAP fault is reported as a rejection."""
        # Arrange
        fault = (
            f'<soap:Envelope xmlns:soap="{SOAP12_NS}"><soap:Body><soap:Fault>'
            "<soap:Reason><soap:Text>Invalid credentials</soap:Text></soap:Reason>"
            "</soap:Fault></soap:Body></soap:Envelope>"
        )

        # Act & Assert
        with pytest.raises(TransportRejected, match="Invalid credentials"):
            extract_payload(fault)

    def test_core_error_code_raises_rejected(self):
        """Test that a non-success CORE ErrorCode is reported as a rejection."""
        # Arrange
        envelope = (
            "<Envelope><Body><R><Payload>x</Payload>"
            "<ErrorCode>Unauthorized</ErrorCode><ErrorMessage>Bad user</ErrorMessage></R></Body></Envelope>"
        )

        # Act & Assert
        with pytest.raises(TransportRejected, match="Unauthorized: Bad user"):
            extract_payload(envelope)

    def test_empty_payload_raises_not_found(self):
        """Test that an envelope without a payload raises PayloadNotFound."""
        # Arrange
        envelope = "<Envelope><Body><R><Payload></Payload></R></Body></Envelope>"

        # Act & Assert
        with pytest.raises(PayloadNotFound):
            extract_payload(envelope)


class TestParseRequestEnvelope:
    """Tests for parse_request_envelope."""

    def test_reads_request_fields(self):
        """Test that a built request parses back into its fields."""
        # Arrange
        request = build_request_envelope(EDI, "user1", "secret", "1161680", "OFFALLY", payload_id="abc")

        # Act
        fields = parse_request_envelope(request.xml)

        # Assert
        assert fields["username"] == "user1"
        assert fields["payload_type"] == PAYLOAD_TYPE_270
        assert fields["payload_id"] == "abc"
        assert fields["sender_id"] == "1161680"
        assert fields["receiver_id"] == "OFFALLY"
        assert fields["payload"] == EDI
