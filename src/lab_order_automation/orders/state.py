"""Order state machine: allowed transitions and the error policy per state.

Every (state, error) pair maps to exactly one outcome. Retries re-enter
LoggingIn with a fresh portal session; operator retry of a Failed order
re-enters Intake.
"""

from enum import Enum

from lab_order_automation.models.order import OrderState
from lab_order_automation.utils.exceptions import (
    ErrorCategory,
    InvalidTransitionError,
    LabOrderAutomationError,
    categorize_error,
)

_PRE_SUBMIT_EXITS = frozenset({OrderState.CANCELLED, OrderState.FAILED})

TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    OrderState.INTAKE: frozenset({OrderState.ENRICHING_DEMOGRAPHICS}) | _PRE_SUBMIT_EXITS,
    OrderState.ENRICHING_DEMOGRAPHICS: frozenset({OrderState.LOGGING_IN}) | _PRE_SUBMIT_EXITS,
    OrderState.LOGGING_IN: frozenset({OrderState.NAVIGATING_TO_ORDER_FORM, OrderState.LOGGING_IN})
    | _PRE_SUBMIT_EXITS,
    OrderState.NAVIGATING_TO_ORDER_FORM: frozenset({OrderState.FILLING_FORM, OrderState.LOGGING_IN})
    | _PRE_SUBMIT_EXITS,
    OrderState.FILLING_FORM: frozenset({OrderState.AWAITING_PREVIEW_CONFIRMATION, OrderState.LOGGING_IN})
    | _PRE_SUBMIT_EXITS,
    OrderState.AWAITING_PREVIEW_CONFIRMATION: frozenset({OrderState.SUBMITTING}) | _PRE_SUBMIT_EXITS,
    OrderState.SUBMITTING: frozenset({OrderState.SUBMITTED, OrderState.FAILED}),
    OrderState.SUBMITTED: frozenset(),
    OrderState.CANCELLED: frozenset(),
    OrderState.FAILED: frozenset({OrderState.INTAKE}),
}

# States in which a transient portal error restarts the portal phase
RETRYABLE_STATES = frozenset(
    {OrderState.LOGGING_IN, OrderState.NAVIGATING_TO_ORDER_FORM, OrderState.FILLING_FORM}
)


class ErrorOutcome(Enum):
    """What the orchestrator does with an error raised in a given state."""

    DEGRADE = "degrade"  # continue without the failed step's result
    RETRY = "retry"  # fresh portal session, retry_count + 1
    FAIL = "fail"  # terminal Failed plus escalation


def can_transition(source: OrderState, target: OrderState) -> bool:
    return target in TRANSITIONS[source]


def validate_transition(source: OrderState, target: OrderState) -> None:
    """Raise InvalidTransitionError unless source -> target is allowed."""
    if not can_transition(source, target):
        raise InvalidTransitionError(f"Invalid order transition: {source.value} -> {target.value}")


def error_outcome(state: OrderState, error: Exception, retry_count: int, max_retries: int) -> ErrorOutcome:
    """Decide how an error raised in ``state`` is handled.

    Eligibility failures degrade to unenriched demographics. Transient portal
    errors retry while ``retry_count < max_retries``. Everything else fails
    the order.

    Example:
        >>> error_outcome(OrderState.FILLING_FORM, ElementNotFound("x", ["#x"]), 3, 3)
        <ErrorOutcome.FAIL: 'fail'>
    """
    if state is OrderState.ENRICHING_DEMOGRAPHICS and isinstance(error, LabOrderAutomationError):
        return ErrorOutcome.DEGRADE
    if (
        state in RETRYABLE_STATES
        and categorize_error(error) is ErrorCategory.TRANSIENT
        and retry_count < max_retries
    ):
        return ErrorOutcome.RETRY
    return ErrorOutcome.FAIL
