"""Unit tests for error categorization and remediation."""

import pytest
import requests

from lab_order_automation.utils.exceptions import (
    AuthenticationFailed,
    ConfigurationError,
    ConfirmationNotFound,
    CredentialsMissing,
    DecodeError,
    ElementNotFound,
    ErrorCategory,
    TransientNavigationError,
    TransportError,
    TransportTimeout,
    ValidationError,
    categorize_error,
    create_error_info,
)


class TestCategorizeError:
    """Test categorize_error."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (ElementNotFound("username field", ["#user"]), ErrorCategory.TRANSIENT),
            (TransientNavigationError("net::ERR_TIMED_OUT"), ErrorCategory.TRANSIENT),
            (AuthenticationFailed("Invalid password"), ErrorCategory.PERMANENT),
            (ConfirmationNotFound("no number"), ErrorCategory.PERMANENT),
            (ValidationError("no tests"), ErrorCategory.PERMANENT),
            (DecodeError("not X12"), ErrorCategory.PERMANENT),
            (TransportTimeout("timed out"), ErrorCategory.PERMANENT),
            (CredentialsMissing("LABCORP_PASSWORD not set"), ErrorCategory.CRITICAL),
            (ConfigurationError("bad file"), ErrorCategory.CRITICAL),
            (requests.exceptions.SSLError("certificate verify failed"), ErrorCategory.CRITICAL),
            (RuntimeError("boom"), ErrorCategory.PERMANENT),
        ],
    )
    def test_category(self, error, category):
        """Test that each error type maps to its handling category."""
        assert categorize_error(error) is category


class TestCreateErrorInfo:
    """Test create_error_info."""

    def test_transient_error_is_retryable(self):
        """Test that a missing element is retryable and names the element."""
        # Arrange
        error = ElementNotFound("new order", ["#new-order"])

        # Act
        info = create_error_info(error, order_id="ORD-1")

        # Assert
        assert info.is_retryable is True
        assert info.error_type == "ElementNotFound"
        assert info.order_id == "ORD-1"
        assert "new order" in info.message
        assert "selector" in info.remediation

    def test_cause_in_technical_details(self):
        """Test that the chained cause is reported in technical details."""
        # Arrange
        try:
            try:
                raise requests.exceptions.ConnectionError("refused")
            except requests.exceptions.ConnectionError as e:
                raise TransportError("Clearinghouse unreachable") from e
        except TransportError as e:
            error = e

        # Act
        info = create_error_info(error)

        # Assert
        assert info.is_retryable is False
        assert info.technical_details == "Caused by: ConnectionError: refused"
        assert "logs/transactions" in info.remediation

    def test_no_cause(self):
        """Test that technical details are empty without a cause."""
        assert create_error_info(AuthenticationFailed("Invalid password")).technical_details is None

    @pytest.mark.parametrize(
        "error, fragment",
        [
            (CredentialsMissing("x"), "environment"),
            (ConfigurationError("x"), "config validate"),
            (AuthenticationFailed("x"), "MFA"),
            (TransientNavigationError("x"), "did not load"),
            (ConfirmationNotFound("x"), "order history"),
            (TransportTimeout("x"), "without eligibility"),
            (ValidationError("x"), "diagnosis code"),
            (RuntimeError("x"), "complete the order manually"),
        ],
    )
    def test_remediation(self, error, fragment):
        """Test that every error type gets actionable guidance."""
        assert fragment in create_error_info(error).remediation
