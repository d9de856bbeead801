"""Logging and audit trail for Lab Order Automation."""

from .audit import log_audit_event, log_transaction
from .formatters import PIIRedactingFormatter
from .logger import configure_logging, configure_operation_logging, get_logger, get_operation_logger

__all__ = [
    "configure_logging",
    "configure_operation_logging",
    "get_logger",
    "get_operation_logger",
    "log_audit_event",
    "log_transaction",
    "PIIRedactingFormatter",
]
