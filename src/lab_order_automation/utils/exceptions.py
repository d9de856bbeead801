"""Custom exception classes for Lab Order Automation.

All exceptions inherit from LabOrderAutomationError to allow catching all custom
exceptions. Layers below the order orchestrator raise these typed failures; only
the orchestrator decides between retry, escalation and propagation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import requests


class LabOrderAutomationError(Exception):
    """Base exception for all Lab Order Automation custom exceptions."""

    pass


class ValidationError(LabOrderAutomationError):
    """Raised when order or patient data validation fails.

    Examples:
        - Order without lab tests or diagnosis codes
        - Patient missing first name, last name or date of birth
        - Malformed order request payload
    """

    pass


class ConfigurationError(LabOrderAutomationError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Invalid configuration file format
        - Unknown portal profile
        - Configuration value out of range
    """

    pass


class CredentialsMissing(ConfigurationError):
    """Raised when a required credential is not present in the environment.

    Examples:
        - Clearinghouse username/password not set
        - Portal login credentials not set
    """

    pass


class TransportError(LabOrderAutomationError):
    """Raised when the clearinghouse exchange fails.

    Examples:
        - Connection refused
        - Timeout
        - Non-success HTTP status
    """

    pass


class TransportTimeout(TransportError):
    """Raised when the clearinghouse does not answer within the timeout bound."""

    pass


class TransportRejected(TransportError):
    """Raised when the clearinghouse answers with a non-success status or SOAP fault.

    Attributes:
        status_code: HTTP status code, if one was received
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PayloadNotFound(TransportError):
    """Raised when no EDI payload can be extracted from the response envelope."""

    pass


class DecodeError(LabOrderAutomationError):
    """Raised when a 271 payload contains nothing that can be decoded.

    Single malformed segments never raise; the decoder skips them.
    """

    pass


class PortalError(LabOrderAutomationError):
    """Base exception for browser automation failures against a lab portal."""

    pass


class AuthenticationFailed(PortalError):
    """Raised when the portal rejects the login. Fatal for the order."""

    pass


class ElementNotFound(PortalError):
    """Raised when every candidate selector for a page element is exhausted.

    Attributes:
        element: Logical name of the element that was looked up
        candidates: Selectors that were tried, in order
    """

    def __init__(self, element: str, candidates: Sequence[str]) -> None:
        self.element = element
        self.candidates = list(candidates)
        super().__init__(
            f"Could not find {element} (tried {len(self.candidates)} selectors: "
            f"{', '.join(self.candidates)}). The portal markup may have changed."
        )


class TransientNavigationError(PortalError):
    """Raised when a page load or navigation fails in a way worth retrying."""

    pass


class ConfirmationNotFound(PortalError):
    """Raised when the order was submitted but no confirmation number was found."""

    pass


class OrderError(LabOrderAutomationError):
    """Base exception for order submission API errors."""

    pass


class OrderNotFoundError(OrderError):
    """Raised when an order identifier is unknown."""

    pass


class OrderConflictError(OrderError):
    """Raised when an order already has an automation in flight."""

    pass


class InvalidTransitionError(OrderError):
    """Raised when an operation is not valid for the order's current state."""

    pass


class SessionExpired(OrderError):
    """Raised on confirm/cancel for an order no longer awaiting confirmation.

    This is a user-visible outcome: the operator must restart the order.
    """

    pass


class ErrorCategory(Enum):
    """Error categorization for handling strategy.

    Determines how the order orchestrator reacts to a failure.

    Attributes:
        TRANSIENT: Retry with a fresh portal session (up to the order's bound)
        PERMANENT: Fail the order and escalate
        CRITICAL: Fail the order and escalate; also indicates an operator-level
            problem (credentials, configuration) that affects every order

    Example:
        >>> category = categorize_error(ElementNotFound("username field", ["#user"]))
        >>> category == ErrorCategory.TRANSIENT
        True
    """

    TRANSIENT = "TRANSIENT"
    PERMANENT = "PERMANENT"
    CRITICAL = "CRITICAL"


@dataclass
class ErrorInfo:
    """Structured error information for actionable error handling.

    Attributes:
        category: Error category (TRANSIENT, PERMANENT, CRITICAL)
        error_type: Exception class name (e.g., "ElementNotFound")
        message: User-friendly error message
        remediation: Actionable guidance for resolving the error
        is_retryable: Whether the error should trigger retry logic
        technical_details: Optional technical details for debugging
        order_id: Optional order ID if error occurred during order processing
    """

    category: ErrorCategory
    error_type: str
    message: str
    remediation: str
    is_retryable: bool
    technical_details: Optional[str] = None
    order_id: Optional[str] = None


def categorize_error(exception: Exception) -> ErrorCategory:
    """Categorize exception for error handling strategy.

    Only element lookup and navigation failures are transient. Everything the
    orchestrator cannot recover from by opening a fresh portal session is
    permanent or critical.

    Args:
        exception: The exception to categorize

    Returns:
        ErrorCategory indicating handling strategy

    Example:
        >>> categorize_error(TransientNavigationError("net::ERR_TIMED_OUT"))
        ErrorCategory.TRANSIENT
        >>> categorize_error(AuthenticationFailed("Invalid password"))
        ErrorCategory.PERMANENT
        >>> categorize_error(CredentialsMissing("LABCORP_PASSWORD not set"))
        ErrorCategory.CRITICAL
    """
    if isinstance(exception, ConfigurationError):
        return ErrorCategory.CRITICAL

    if isinstance(exception, requests.exceptions.SSLError):
        return ErrorCategory.CRITICAL

    if isinstance(exception, (ElementNotFound, TransientNavigationError)):
        return ErrorCategory.TRANSIENT

    # Default to PERMANENT: authentication, validation, decode, confirmation
    return ErrorCategory.PERMANENT


def create_error_info(
    exception: Exception,
    order_id: Optional[str] = None,
) -> ErrorInfo:
    """Create structured error information from exception.

    Args:
        exception: Exception that occurred
        order_id: Optional order ID if error during order processing

    Returns:
        ErrorInfo with categorization and remediation guidance

    Example:
        >>> error_info = create_error_info(
        ...     AuthenticationFailed("Login verification failed"),
        ...     order_id="ORD-123"
        ... )
        >>> print(error_info.remediation)
    """
    category = categorize_error(exception)

    technical_details = None
    if exception.__cause__ is not None:
        technical_details = f"Caused by: {type(exception.__cause__).__name__}: {exception.__cause__}"

    return ErrorInfo(
        category=category,
        error_type=type(exception).__name__,
        message=str(exception),
        remediation=_generate_remediation(exception),
        is_retryable=category == ErrorCategory.TRANSIENT,
        technical_details=technical_details,
        order_id=order_id,
    )


def _generate_remediation(exception: Exception) -> str:
    """Generate actionable remediation message for an error.

    Args:
        exception: Exception that occurred

    Returns:
        Actionable remediation message
    """
    if isinstance(exception, CredentialsMissing):
        return (
            "Required credentials are not set. Add them to the environment or .env file "
            "(see config/config.example.json for the variable names)."
        )

    if isinstance(exception, ConfigurationError):
        return "Configuration error. Run 'lab-order-automation config validate' to check the file."

    if isinstance(exception, AuthenticationFailed):
        return (
            "The portal rejected the login. Verify the portal username/password and "
            "log in manually once to clear any password-reset or MFA prompt."
        )

    if isinstance(exception, ElementNotFound):
        return (
            "A page element could not be located. The portal markup may have changed; "
            "add the new selector to the portal profile's candidate list."
        )

    if isinstance(exception, TransientNavigationError):
        return "The portal did not load in time. Retry the order; check portal status if it persists."

    if isinstance(exception, ConfirmationNotFound):
        return (
            "The order may have been placed without a confirmation number. "
            "Check the portal's order history before re-submitting."
        )

    if isinstance(exception, TransportTimeout):
        return "The clearinghouse did not answer in time. The order continues without eligibility data."

    if isinstance(exception, TransportError):
        return "The clearinghouse exchange failed. Check logs/transactions/ for the raw exchange."

    if isinstance(exception, ValidationError):
        return "Order data is incomplete. Provide at least one test, one diagnosis code and full patient identity."

    return "Review the error message and the automation screenshots, then complete the order manually."
