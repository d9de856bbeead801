"""Unit tests for OrderSubmissionService."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from lab_order_automation.notifications.escalation import EscalationNotifier
from lab_order_automation.orders.service import OrderSubmissionService
from lab_order_automation.utils.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    OrderConflictError,
    OrderNotFoundError,
    SessionExpired,
    TransportTimeout,
    ValidationError,
)
from tests.fakes import build_portal_page, wait_until_idle


@pytest.fixture
def notifier() -> MagicMock:
    notifier = MagicMock(spec=EscalationNotifier)
    notifier.notify_failure.return_value = True
    return notifier


@pytest.fixture
def eligibility(eligible_result) -> MagicMock:
    service = MagicMock()
    service.check_eligibility.return_value = eligible_result
    return service


@pytest.fixture
def make_service(app_config, notifier, eligibility, session_factory):
    services = []

    def _make(page_factory=build_portal_page, pages=None):
        service = OrderSubmissionService(
            app_config,
            notifier=notifier,
            eligibility_service=eligibility,
            session_factory=session_factory(page_factory, pages),
        )
        service.start()
        services.append(service)
        return service

    yield _make
    for service in services:
        service.shutdown()


class TestSubmit:
    """Tests for order intake."""

    def test_submit_returns_processing(self, make_service, order_payload, portal_credentials):
        """Test that a valid order is accepted and reaches the preview."""
        # Arrange
        service = make_service()

        # Act
        accepted = service.submit(order_payload)
        status = service.wait("ORD-API-1", timeout=5, until_preview=True)

        # Assert
        assert accepted == {"orderId": "ORD-API-1", "status": "processing"}
        assert status["status"] == "preview"
        assert status["logs"]

    def test_invalid_order_is_rejected(self, make_service, order_payload):
        """Test that an order without diagnoses is rejected and never stored."""
        # Arrange
        service = make_service()
        order_payload["diagnosisCodes"] = []

        # Act / Assert
        with pytest.raises(ValidationError):
            service.submit(order_payload)
        assert "ORD-API-1" not in service.store

    def test_unknown_portal_is_rejected(self, make_service, order_payload):
        """Test that an order for an unconfigured portal is rejected."""
        # Arrange
        service = make_service()
        order_payload["portal"] = "nowhere"

        # Act / Assert
        with pytest.raises(ConfigurationError, match="Unknown portal"):
            service.submit(order_payload)

    def test_duplicate_order_id(self, make_service, order_payload, portal_credentials):
        """Test that a second submit with the same order ID conflicts."""
        # Arrange
        service = make_service()
        service.submit(order_payload)

        # Act / Assert
        with pytest.raises(OrderConflictError):
            service.submit(order_payload)

    def test_unknown_order_status(self, make_service):
        """Test that status of an unknown order raises OrderNotFoundError."""
        with pytest.raises(OrderNotFoundError):
            make_service().get_status("ORD-MISSING")


class TestPreviewAndDecision:
    """Tests for preview, confirm and cancel."""

    def test_preview_contents(self, make_service, order_payload, portal_credentials):
        """Test that the preview shows the merged patient and the screenshot reference."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)

        # Act
        preview = service.get_preview("ORD-API-1")

        # Assert
        assert preview["status"] == "preview"
        assert preview["previewArtifactRef"].startswith("/screenshots/testportal-ORD-API-1")
        assert preview["patient"]["address"]["city"] == "SALT LAKE CITY"
        assert preview["patient"]["phone"] == "8015550100"
        assert preview["diagnosisCodes"] == ["F11.20"]
        assert preview["eligibility"]["isEligible"] is True

        service.cancel("ORD-API-1")

    def test_confirm_submits(self, make_service, order_payload, portal_credentials):
        """Test that confirm returns the portal confirmation number."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)

        # Act
        result = service.confirm("ORD-API-1", timeout=5)

        # Assert
        assert result["status"] == "submitted"
        assert result["confirmationId"] == "1234567"

    def test_cancel_at_preview(self, make_service, order_payload, portal_credentials, notifier):
        """Test that cancel ends the order Cancelled and is idempotent."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)

        # Act
        first = service.cancel("ORD-API-1", timeout=5)
        second = service.cancel("ORD-API-1")

        # Assert
        assert first["status"] == "cancelled"
        assert second["status"] == "cancelled"
        notifier.notify_failure.assert_not_called()

    def test_confirm_after_cancel_expired(self, make_service, order_payload, portal_credentials):
        """Test that confirm and preview after cancellation report an expired session."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)
        service.cancel("ORD-API-1", timeout=5)

        # Act / Assert
        with pytest.raises(SessionExpired):
            service.confirm("ORD-API-1", timeout=1)
        with pytest.raises(SessionExpired):
            service.get_preview("ORD-API-1")

    def test_cancel_submitted_order(self, make_service, order_payload, portal_credentials):
        """Test that a submitted order can no longer be cancelled."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)
        service.confirm("ORD-API-1", timeout=5)

        # Act / Assert
        with pytest.raises(SessionExpired):
            service.cancel("ORD-API-1")


class TestRetry:
    """Tests for operator retry of failed orders."""

    def test_failed_order_can_be_retried(self, make_service, order_payload, portal_credentials, notifier):
        """Test that a Failed order re-runs with a fresh budget and can then submit."""
        # Arrange
        attempts = []

        def flaky_page():
            attempts.append(1)
            return build_portal_page(login_ok=len(attempts) > 1)

        service = make_service(page_factory=flaky_page)
        service.submit(order_payload)
        failed = service.wait("ORD-API-1", timeout=5)
        wait_until_idle(service, "ORD-API-1")
        assert failed["status"] == "failed"
        notifier.notify_failure.assert_called_once()

        # Act
        retried = service.retry("ORD-API-1")
        service.wait("ORD-API-1", timeout=5, until_preview=True)
        result = service.confirm("ORD-API-1", timeout=5)

        # Assert
        assert retried["status"] == "processing"
        assert result["status"] == "submitted"
        assert service.get_status("ORD-API-1")["retryCount"] == 0

    def test_retry_right_after_failure_waits_for_escalation(
        self, make_service, order_payload, portal_credentials, notifier
    ):
        """Test that a retry issued as soon as the order fails runs after its escalation."""
        # Arrange
        attempts = []
        escalated = threading.Event()

        def flaky_page():
            attempts.append(1)
            return build_portal_page(login_ok=len(attempts) > 1)

        def slow_escalation(order, error, artifact_ref):
            time.sleep(0.2)
            escalated.set()
            return True

        notifier.notify_failure.side_effect = slow_escalation
        service = make_service(page_factory=flaky_page)
        service.submit(order_payload)
        failed = service.wait("ORD-API-1", timeout=5)
        assert failed["status"] == "failed"

        # Act
        retried = service.retry("ORD-API-1")

        # Assert
        assert escalated.is_set()
        assert retried["status"] == "processing"
        service.wait("ORD-API-1", timeout=5, until_preview=True)
        assert service.confirm("ORD-API-1", timeout=5)["status"] == "submitted"
        notifier.notify_failure.assert_called_once()

    def test_only_failed_orders_retry(self, make_service, order_payload, portal_credentials):
        """Test that retrying a non-failed order is rejected."""
        # Arrange
        service = make_service()
        service.submit(order_payload)
        service.wait("ORD-API-1", timeout=5, until_preview=True)

        # Act / Assert
        with pytest.raises(InvalidTransitionError):
            service.retry("ORD-API-1")
        service.cancel("ORD-API-1")


class TestEligibilityAndConnection:
    """Tests for standalone eligibility checks and portal connection tests."""

    def test_check_eligibility_applies_fallback_phone(self, make_service, eligibility):
        """Test that a missing payer phone is replaced by the fallback phone."""
        # Arrange
        service = make_service()
        request = {
            "firstName": "Jeremy",
            "lastName": "Montoya",
            "dateOfBirth": "1984-07-17",
            "medicaidId": "0123456789",
            "fallbackPhone": "8015550100",
        }

        # Act
        result = service.check_eligibility(request)

        # Assert
        assert result.verified_demographics.phone == "8015550100"
        patient = eligibility.check_eligibility.call_args[0][0]
        assert patient.last_name == "Montoya"

    def test_check_eligibility_propagates_transport_errors(self, make_service, eligibility):
        """Test that a clearinghouse timeout reaches the caller."""
        # Arrange
        eligibility.check_eligibility.side_effect = TransportTimeout("timed out")
        service = make_service()

        # Act / Assert
        with pytest.raises(TransportTimeout):
            service.check_eligibility({"firstName": "A", "lastName": "B", "dateOfBirth": "1990-01-01"})

    def test_connection_success(self, make_service, portal_credentials):
        """Test that a successful login is reported with the landing URL."""
        # Arrange
        pages = []
        service = make_service(pages=pages)

        # Act
        result = service.test_connection("testportal")

        # Assert
        assert result["success"] is True
        assert "/dashboard" in result["message"]
        assert pages[0].closed is True

    def test_connection_rejected_login(self, make_service, portal_credentials):
        """Test that a rejected login is reported as a failure."""
        # Arrange
        service = make_service(page_factory=lambda: build_portal_page(login_ok=False))

        # Act
        result = service.test_connection("testportal")

        # Assert
        assert result["success"] is False
        assert result["message"].startswith("AuthenticationFailed")

    def test_connection_without_credentials(self, make_service, monkeypatch):
        """Test that missing credentials are reported without opening a browser."""
        # Arrange
        monkeypatch.delenv("TEST_PORTAL_USERNAME", raising=False)
        pages = []
        service = make_service(pages=pages)

        # Act
        result = service.test_connection("testportal")

        # Assert
        assert result["success"] is False
        assert "TEST_PORTAL_USERNAME" in result["message"]
        assert pages == []
