"""Escalation of orders that could not be automated."""

from lab_order_automation.notifications.escalation import (
    CompositeEscalationNotifier,
    EmailEscalationNotifier,
    EscalationNotifier,
    LoggingEscalationNotifier,
    create_notifier,
)
from lab_order_automation.notifications.report import FailureReport, build_failure_report

__all__ = [
    "CompositeEscalationNotifier",
    "EmailEscalationNotifier",
    "EscalationNotifier",
    "FailureReport",
    "LoggingEscalationNotifier",
    "build_failure_report",
    "create_notifier",
]
