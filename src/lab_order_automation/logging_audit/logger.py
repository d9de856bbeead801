"""Logging configuration and logger factory for Lab Order Automation.

This module provides centralized logging configuration with support for:
- Console and rotating file handlers with different log levels
- PII redaction via PIIRedactingFormatter
- Per-subsystem log levels (eligibility, portal, orders, notifications)
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .formatters import PIIRedactingFormatter

if TYPE_CHECKING:
    from ..config.schema import OperationLoggingConfig

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(thread)d - %(message)s"
DEFAULT_LOG_FILE = Path("logs") / "lab-order-automation.log"
MAX_LOG_FILE_SIZE = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

_logging_configured = False

# Subsystem package loggers; module loggers below them inherit the level
OPERATION_LOGGERS = {
    "eligibility": "lab_order_automation.eligibility",
    "portal": "lab_order_automation.portal",
    "orders": "lab_order_automation.orders",
    "notifications": "lab_order_automation.notifications",
}

logger = logging.getLogger(__name__)


def _parse_level(level: str, label: str = "log level") -> int:
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(
            f"Invalid {label}: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    return numeric_level


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    redact_pii: bool = False,
) -> None:
    """Configure console and file logging.

    Idempotent: calling it again replaces the handlers installed by the
    previous call.

    Args:
        level: Console log level. The file handler always records DEBUG.
        log_file: Log file path. Defaults to LAB_ORDER_LOG_FILE, then
            logs/lab-order-automation.log.
        redact_pii: Whether to redact patient identifiers

    Raises:
        ValueError: If an invalid log level is provided
        RuntimeError: If the log directory cannot be created

    Example:
        >>> configure_logging(level="DEBUG", redact_pii=True)
    """
    global _logging_configured

    numeric_level = _parse_level(level)

    if log_file is None:
        env_log_file = os.environ.get("LAB_ORDER_LOG_FILE")
        log_file = Path(env_log_file) if env_log_file else DEFAULT_LOG_FILE

    log_dir = log_file.parent
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        raise RuntimeError(
            f"Failed to create log directory: {log_dir}. "
            f"Ensure write permissions are available. Error: {e}"
        ) from e

    root_logger = logging.getLogger()

    if _logging_configured:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(PIIRedactingFormatter(fmt=DEFAULT_LOG_FORMAT, redact_pii=redact_pii))
    root_logger.addHandler(console_handler)

    try:
        file_handler = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=MAX_LOG_FILE_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(PIIRedactingFormatter(fmt=DEFAULT_LOG_FORMAT, redact_pii=redact_pii))
        root_logger.addHandler(file_handler)
    except (OSError, PermissionError) as e:
        root_logger.warning(
            "Failed to create file handler for %s: %s. Logging to console only.", log_file, e
        )

    _logging_configured = True


def get_logger(module_name: str) -> logging.Logger:
    """Get a logger for the specified module (call with ``__name__``)."""
    return logging.getLogger(module_name)


def get_operation_logger(operation: str) -> logging.Logger:
    """Get the package logger for a subsystem.

    Args:
        operation: One of eligibility, portal, orders, notifications

    Returns:
        Logger instance for the subsystem

    Raises:
        ValueError: If operation is not a recognized subsystem
    """
    if operation not in OPERATION_LOGGERS:
        raise ValueError(
            f"Unknown operation: {operation}. "
            f"Must be one of: {', '.join(OPERATION_LOGGERS.keys())}"
        )
    return logging.getLogger(OPERATION_LOGGERS[operation])


def configure_operation_logging(
    eligibility_log_level: str = "INFO",
    portal_log_level: str = "INFO",
    orders_log_level: str = "INFO",
    notifications_log_level: str = "INFO",
) -> None:
    """Set the log level of each subsystem.

    Useful for tracing portal selector lookups at DEBUG without flooding the
    log with clearinghouse bodies.

    Raises:
        ValueError: If any log level is invalid

    Example:
        >>> configure_operation_logging(portal_log_level="DEBUG")
    """
    levels = {
        "eligibility": eligibility_log_level,
        "portal": portal_log_level,
        "orders": orders_log_level,
        "notifications": notifications_log_level,
    }

    for operation, level in levels.items():
        numeric_level = _parse_level(level, f"log level for {operation}")
        logger_name = OPERATION_LOGGERS[operation]
        logging.getLogger(logger_name).setLevel(numeric_level)
        logger.debug("Set %s logger level to %s", logger_name, level.upper())


def configure_operation_logging_from_config(config: "OperationLoggingConfig") -> None:
    """Configure subsystem log levels from an OperationLoggingConfig."""
    configure_operation_logging(
        eligibility_log_level=config.eligibility_log_level,
        portal_log_level=config.portal_log_level,
        orders_log_level=config.orders_log_level,
        notifications_log_level=config.notifications_log_level,
    )
