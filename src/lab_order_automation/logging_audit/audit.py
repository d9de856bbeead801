"""Audit trail for order and eligibility events.

Every order transition that matters to the practice (submitted, preview
ready, confirmed, cancelled, failed) and every clearinghouse exchange is
written as a structured ``AUDIT`` / ``TRANSACTION`` line.
"""

import time
import uuid
from typing import Any, Dict, Optional

from .logger import get_logger

logger = get_logger(__name__)

# Fields emitted first, in this order
_FIELD_ORDER = [
    "status",
    "order_id",
    "portal",
    "state",
    "retry_count",
    "confirmation_id",
    "duration",
    "error_message",
    "correlation_id",
]


def log_audit_event(event_type: str, details: Dict[str, Any]) -> None:
    """Log an audit trail event.

    Failures are logged at ERROR, everything else at INFO.

    Args:
        event_type: Type of event (e.g., "ORDER_SUBMITTED", "ORDER_FAILED",
                   "ELIGIBILITY_CHECKED")
        details: Event details. Common fields include order_id, portal, status,
                 retry_count, confirmation_id, duration, error_message and
                 correlation_id.

    Example:
        >>> log_audit_event("ORDER_CONFIRMED", {
        ...     "order_id": "ORD-1",
        ...     "portal": "labcorp",
        ...     "status": "success",
        ...     "confirmation_id": "1234567",
        ... })
    """
    details = dict(details)
    details.setdefault("timestamp", time.time())
    details.setdefault("correlation_id", str(uuid.uuid4()))

    message_parts = [f"AUDIT [{event_type}]"]

    for field in _FIELD_ORDER:
        if field in details:
            value = details[field]
            if field == "duration" and isinstance(value, (int, float)):
                message_parts.append(f"{field}={value:.2f}s")
            else:
                message_parts.append(f"{field}={value}")

    for key, value in details.items():
        if key not in _FIELD_ORDER and key != "timestamp":
            message_parts.append(f"{key}={value}")

    audit_message = " | ".join(message_parts)

    if details.get("status") == "failure":
        logger.error(audit_message)
    else:
        logger.info(audit_message)


def log_transaction(
    transaction_type: str,
    request: str,
    response: Optional[str],
    status: str = "success",
    correlation_id: Optional[str] = None,
) -> str:
    """Log a clearinghouse exchange.

    The summary line goes to INFO; full bodies go to DEBUG. Callers are
    responsible for masking credentials in ``request`` before calling.

    Args:
        transaction_type: Type of exchange (e.g., "ELIGIBILITY_270")
        request: Request envelope
        response: Response body, or None when no response was received
        status: "success" or "failure"
        correlation_id: Identifier tying the log lines together; generated
            when omitted

    Returns:
        The correlation ID used
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    response_text = response or ""

    logger.info(
        "TRANSACTION [%s] | status=%s | correlation_id=%s | request_size=%d bytes | response_size=%d bytes",
        transaction_type,
        status,
        correlation_id,
        len(request),
        len(response_text),
    )
    logger.debug("TRANSACTION REQUEST [%s] | correlation_id=%s\n%s", transaction_type, correlation_id, request)
    logger.debug(
        "TRANSACTION RESPONSE [%s] | correlation_id=%s\n%s", transaction_type, correlation_id, response_text
    )
    return correlation_id
