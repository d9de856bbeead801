"""Unit tests for EligibilityService."""

from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from lab_order_automation.config.schema import Config
from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.eligibility.x12 import split_segments
from lab_order_automation.mock_server.clearinghouse_endpoint import build_271_echo
from lab_order_automation.mock_server.config import ClearinghouseBehavior
from lab_order_automation.models.eligibility import PlanCategory
from lab_order_automation.models.patient import PatientDemographics
from lab_order_automation.utils.exceptions import CredentialsMissing, TransportTimeout, ValidationError


@pytest.fixture
def clearinghouse_credentials(monkeypatch):
    monkeypatch.setenv("OFFICE_ALLY_USERNAME", "user1")
    monkeypatch.setenv("OFFICE_ALLY_PASSWORD", "secret")


@pytest.fixture
def echo_transport() -> MagicMock:
    """Transport that answers every 270 with a 271 built from it."""
    transport = MagicMock()
    transport.send.side_effect = lambda edi, user, password: build_271_echo(
        edi,
        ClearinghouseBehavior(
            plan_description="TARGETED ADULT MEDICAID",
            street="123 MAIN ST",
            city="SALT LAKE CITY",
            state="UT",
            postal_code="84101",
            phone="",
        ),
    )
    return transport


class TestEligibilityService:
    """Tests for check_eligibility."""

    def test_check_eligibility_decodes_response(self, clearinghouse_credentials, echo_transport, sample_patient):
        """Test that the inquiry is sent and the answer decoded."""
        # Arrange
        service = EligibilityService(Config(), transport=echo_transport)

        # Act
        result = service.check_eligibility(sample_patient)

        # Assert
        assert result.is_eligible is True
        assert result.plan_category is PlanCategory.TRADITIONAL_FFS
        assert result.verified_id == "0123456789"
        assert result.verified_demographics.address.city == "SALT LAKE CITY"
        assert result.verified_demographics.phone is None
        echo_transport.send.assert_called_once()
        assert echo_transport.send.call_args.args[1:] == ("user1", "secret")

    def test_inquiry_uses_injected_clock(self, clearinghouse_credentials, echo_transport, sample_patient):
        """Test that the 270 dates come from the service clock."""
        # Arrange
        service = EligibilityService(
            Config(), transport=echo_transport, clock=lambda: datetime(2025, 1, 15, 23, 30)
        )

        # Act
        service.check_eligibility(sample_patient)

        # Assert
        edi_270 = echo_transport.send.call_args.args[0]
        dtp = [s for s in split_segments(edi_270) if s.segment_id == "DTP"][0]
        assert dtp.element(3) == "20250115-20250115"

    def test_fresh_control_number_per_call(self, clearinghouse_credentials, echo_transport, sample_patient):
        """Test that each call sends a new inquiry."""
        # Arrange
        ticks = iter([datetime(2025, 1, 15, 9, 0, 0), datetime(2025, 1, 15, 9, 0, 1)])
        service = EligibilityService(Config(), transport=echo_transport, clock=lambda: next(ticks))

        # Act
        service.check_eligibility(sample_patient)
        service.check_eligibility(sample_patient)

        # Assert
        controls = [
            [s for s in split_segments(call.args[0]) if s.segment_id == "ISA"][0].element(13)
            for call in echo_transport.send.call_args_list
        ]
        assert controls[0] != controls[1]

    def test_fresh_identifiers_within_the_same_instant(
        self, clearinghouse_credentials, echo_transport, sample_patient
    ):
        """Test that two calls at the same clock reading send different control and trace numbers."""
        # Arrange
        service = EligibilityService(
            Config(), transport=echo_transport, clock=lambda: datetime(2025, 1, 15, 9, 0, 0)
        )

        # Act
        service.check_eligibility(sample_patient)
        service.check_eligibility(sample_patient)

        # Assert
        sent = [split_segments(call.args[0]) for call in echo_transport.send.call_args_list]
        controls = [[s for s in segments if s.segment_id == "ISA"][0].element(13) for segments in sent]
        traces = [[s for s in segments if s.segment_id == "TRN"][0].element(2) for segments in sent]
        assert controls[0] != controls[1]
        assert traces[0] != traces[1]

    def test_missing_credentials_raise(self, monkeypatch, echo_transport, sample_patient):
        """Test that missing clearinghouse credentials raise before anything is sent."""
        # Arrange
        monkeypatch.delenv("OFFICE_ALLY_USERNAME", raising=False)
        monkeypatch.delenv("OFFICE_ALLY_PASSWORD", raising=False)
        service = EligibilityService(Config(), transport=echo_transport)

        # Act & Assert
        with pytest.raises(CredentialsMissing, match="OFFICE_ALLY_USERNAME"):
            service.check_eligibility(sample_patient)
        echo_transport.send.assert_not_called()

    @pytest.mark.parametrize(
        "patient",
        [
            PatientDemographics("", "Montoya", date(1984, 7, 17)),
            PatientDemographics("Jeremy", None, date(1984, 7, 17)),
            PatientDemographics("Jeremy", "Montoya", None),
        ],
    )
    def test_incomplete_identity_raises(self, clearinghouse_credentials, echo_transport, patient):
        """Test that name and date of birth are required."""
        # Arrange
        service = EligibilityService(Config(), transport=echo_transport)

        # Act & Assert
        with pytest.raises(ValidationError):
            service.check_eligibility(patient)
        echo_transport.send.assert_not_called()

    def test_transport_errors_propagate(self, clearinghouse_credentials, sample_patient):
        """Test that transport failures are raised to the caller unchanged."""
        # Arrange
        transport = MagicMock()
        transport.send.side_effect = TransportTimeout("timed out")
        service = EligibilityService(Config(), transport=transport)

        # Act & Assert
        with pytest.raises(TransportTimeout):
            service.check_eligibility(sample_patient)
        transport.send.assert_called_once()
