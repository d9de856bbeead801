"""Unit tests for the mock clearinghouse: config, 271 echo and endpoint."""

import json
from datetime import date, datetime

import pytest

from lab_order_automation.eligibility.core_envelope import build_request_envelope, extract_payload
from lab_order_automation.eligibility.x12_270 import encode_270_text
from lab_order_automation.eligibility.x12_271 import decode_271
from lab_order_automation.mock_server import (
    ClearinghouseBehavior,
    MockServerConfig,
    PayloadStyle,
    build_271_echo,
    create_app,
    load_config,
)
from lab_order_automation.models.eligibility import (
    InterchangeIdentity,
    PayerIdentity,
    PlanCategory,
    ProviderIdentity,
)
from lab_order_automation.models.patient import PatientDemographics
from lab_order_automation.utils.exceptions import TransportRejected

ENDPOINT = "/TransactionService/rtx.svc"


@pytest.fixture
def edi_270() -> str:
    return encode_270_text(
        PatientDemographics("Jeremy", "Montoya", date(1984, 7, 17), external_id="0123456789"),
        ProviderIdentity("MOONLIT_PLLC", "1275348807"),
        PayerIdentity("MEDICAID UTAH", "UTMCD"),
        InterchangeIdentity("1161680", "OFFALLY"),
        "123456789",
        datetime(2025, 1, 15, 9, 5),
    )


def _client(tmp_path, **behavior):
    config = MockServerConfig(
        log_path=str(tmp_path / "mock.log"),
        clearinghouse_behavior=ClearinghouseBehavior(**behavior),
    )
    app = create_app(config)
    app.config["TESTING"] = True
    return app.test_client()


def _post_270(client, edi_270: str):
    envelope = build_request_envelope(edi_270, "user1", "secret", "1161680", "OFFALLY", payload_id="pid-1")
    return client.post(ENDPOINT, data=envelope.xml, content_type="application/soap+xml; charset=utf-8")


class TestMockConfig:
    """Tests for mock server configuration loading."""

    def test_defaults_when_default_file_missing(self, monkeypatch, tmp_path):
        """Test that a missing default config file yields defaults."""
        # Arrange
        monkeypatch.chdir(tmp_path)

        # Act
        config = load_config()

        # Assert
        assert config.http_port == 8080
        assert config.clearinghouse_endpoint == ENDPOINT
        assert config.clearinghouse_behavior.coverage_active is True

    def test_explicit_missing_file_raises(self, tmp_path):
        """Test that an explicitly named missing file is an error."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.json")

    def test_file_and_env_override(self, monkeypatch, tmp_path):
        """Test that the file is read and MOCK_SERVER_* variables override it."""
        # Arrange
        config_file = tmp_path / "mock.json"
        config_file.write_text(
            json.dumps({"http_port": 9000, "clearinghouse_behavior": {"plan_description": "MOLINA"}}),
            encoding="utf-8",
        )
        monkeypatch.setenv("MOCK_SERVER_HTTP_PORT", "9100")

        # Act
        config = load_config(config_file)

        # Assert
        assert config.http_port == 9100
        assert config.clearinghouse_behavior.plan_description == "MOLINA"

    def test_invalid_json_raises(self, tmp_path):
        """Test that malformed JSON is reported as ValueError."""
        # Arrange
        config_file = tmp_path / "mock.json"
        config_file.write_text("{not json", encoding="utf-8")

        # Act & Assert
        with pytest.raises(ValueError, match="Failed to parse"):
            load_config(config_file)

    def test_endpoint_must_be_absolute(self):
        """Test that endpoint paths must start with a slash."""
        with pytest.raises(ValueError):
            MockServerConfig(clearinghouse_endpoint="rtx.svc")


class TestBuild271Echo:
    """Tests for the 271 built from a 270."""

    def test_echo_decodes_to_configured_answer(self, edi_270):
        """Test that the echoed 271 carries the inquiry identity and configured coverage."""
        # Arrange & Act
        result = decode_271(build_271_echo(edi_270, ClearinghouseBehavior()))

        # Assert
        assert result.is_eligible is True
        assert result.plan_category is PlanCategory.TRADITIONAL_FFS
        assert result.verified_id == "0123456789"
        assert result.verified_demographics.last_name == "MONTOYA"
        assert result.verified_demographics.dob == date(1984, 7, 17)
        assert result.verified_demographics.phone == "8015551234"
        assert result.verified_demographics.address.city == "SALT LAKE CITY"

    def test_subscriber_not_found(self, edi_270):
        """Test that subscriber_found=False answers with an AAA rejection."""
        # Arrange & Act
        result = decode_271(build_271_echo(edi_270, ClearinghouseBehavior(subscriber_found=False)))

        # Assert
        assert result.is_eligible is False
        assert result.rejections == ["75: Subscriber/Insured Not Found"]

    def test_inactive_coverage(self, edi_270):
        """Test that coverage_active=False answers with inactive coverage."""
        result = decode_271(build_271_echo(edi_270, ClearinghouseBehavior(coverage_active=False)))
        assert result.is_eligible is False

    def test_managed_care_plan(self, edi_270):
        """Test that an MCO plan description decodes as managed care."""
        # Arrange
        behavior = ClearinghouseBehavior(plan_description="SELECTHEALTH COMMUNITY CARE", insurance_type="HM")

        # Act
        result = decode_271(build_271_echo(edi_270, behavior))

        # Assert
        assert result.plan_category is PlanCategory.MANAGED_CARE

    def test_se_count_matches_segments(self, edi_270):
        """Test that the echoed transaction set count is consistent."""
        # Arrange
        raw = build_271_echo(edi_270)
        ids = [piece.split("*")[0] for piece in raw.split("~") if piece]

        # Act
        se = [piece for piece in raw.split("~") if piece.startswith("SE*")][0]

        # Assert
        assert int(se.split("*")[1]) == ids.index("SE") - ids.index("ST") + 1


class TestClearinghouseEndpoint:
    """Tests for the mock real-time endpoint."""

    def test_health(self, tmp_path):
        """Test that /health reports the endpoint and request count."""
        # Arrange
        client = _client(tmp_path)

        # Act
        response = client.get("/health")

        # Assert
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert ENDPOINT in body["endpoints"]
        assert body["request_count"] == 1

    def test_answers_270_with_271(self, tmp_path, edi_270):
        """Test that a CORE request is answered with a CORE response carrying a 271."""
        # Arrange
        client = _client(tmp_path)

        # Act
        response = _post_270(client, edi_270)

        # Assert
        assert response.status_code == 200
        assert response.mimetype == "application/soap+xml"
        payload = extract_payload(response.get_data(as_text=True))
        assert payload.startswith("ISA")
        assert decode_271(payload).verified_demographics.first_name == "JEREMY"

    def test_prefixed_payload_style(self, tmp_path, edi_270):
        """Test that the prefixed response shape is still extractable."""
        # Arrange
        client = _client(tmp_path, payload_style=PayloadStyle.PREFIXED)

        # Act
        response = _post_270(client, edi_270)

        # Assert
        text = response.get_data(as_text=True)
        assert "ns1:Payload" in text
        assert extract_payload(text).startswith("ISA")

    def test_simulated_failure_returns_fault(self, tmp_path, edi_270):
        """Test that failure_rate=1 always answers with a SOAP fault."""
        # Arrange
        client = _client(tmp_path, failure_rate=1.0, custom_fault_message="Service unavailable")

        # Act
        response = _post_270(client, edi_270)

        # Assert
        assert response.status_code == 500
        with pytest.raises(TransportRejected, match="Service unavailable"):
            extract_payload(response.get_data(as_text=True))

    def test_malformed_xml_returns_sender_fault(self, tmp_path):
        """Test that a non-XML body is answered with a 400 fault."""
        # Arrange
        client = _client(tmp_path)

        # Act
        response = client.post(ENDPOINT, data="<not-xml", content_type="application/soap+xml")

        # Assert
        assert response.status_code == 400
        assert b"Malformed XML" in response.data

    def test_missing_payload_returns_sender_fault(self, tmp_path):
        """Test that an envelope without a Payload is rejected."""
        # Arrange
        client = _client(tmp_path)

        # Act
        response = client.post(ENDPOINT, data="<Envelope><Body/></Envelope>", content_type="application/soap+xml")

        # Assert
        assert response.status_code == 400
        assert b"no Payload" in response.data

    def test_custom_endpoint_path(self, tmp_path, edi_270):
        """Test that a configured endpoint path is served."""
        # Arrange
        config = MockServerConfig(log_path=str(tmp_path / "mock.log"), clearinghouse_endpoint="/rtx")
        client = create_app(config).test_client()
        envelope = build_request_envelope(edi_270, "user1", "secret", "1161680", "OFFALLY")

        # Act
        response = client.post("/rtx", data=envelope.xml, content_type="application/soap+xml")

        # Assert
        assert response.status_code == 200
