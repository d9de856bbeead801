"""Escalation of failed orders to staff.

Notifiers return True when the report was delivered and never raise: a
broken notification channel is logged and must not change the order's
outcome.
"""

import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Optional, Sequence

from lab_order_automation.config.manager import get_smtp_credentials
from lab_order_automation.config.schema import Config, NotificationsConfig
from lab_order_automation.models.order import PortalOrder
from lab_order_automation.notifications.report import build_failure_report
from lab_order_automation.utils.exceptions import CredentialsMissing

logger = logging.getLogger(__name__)


class EscalationNotifier:
    """Receives every order that ends in Failed."""

    def notify_failure(self, order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> bool:
        raise NotImplementedError


class LoggingEscalationNotifier(EscalationNotifier):
    """Writes the failure report to the log and to the escalation directory.

    Args:
        escalation_dir: Directory for report files; None logs only
    """

    def __init__(self, escalation_dir: Optional[Path] = None) -> None:
        self.escalation_dir = Path(escalation_dir) if escalation_dir else None

    def notify_failure(self, order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> bool:
        report = build_failure_report(order, error, artifact_ref)
        logger.error("ESCALATION %s\n%s", report.subject, report.text)

        if self.escalation_dir is None:
            return True
        try:
            self.escalation_dir.mkdir(parents=True, exist_ok=True)
            stem = f"{order.order_id}-{datetime.now():%Y%m%dT%H%M%S}"
            (self.escalation_dir / f"{stem}.txt").write_text(report.text, encoding="utf-8")
            (self.escalation_dir / f"{stem}.html").write_text(report.html, encoding="utf-8")
        except OSError as e:
            logger.error("Could not write escalation report for order %s: %s", order.order_id, e)
            return False
        logger.info("Escalation report for order %s saved to %s", order.order_id, self.escalation_dir)
        return True


class EmailEscalationNotifier(EscalationNotifier):
    """Emails the failure report with the screenshot attached.

    Args:
        settings: SMTP host, port, TLS, sender and recipients
        screenshot_dir: Directory screenshot references resolve against
    """

    def __init__(self, settings: NotificationsConfig, screenshot_dir: Path = Path("screenshots")) -> None:
        self.settings = settings
        self.screenshot_dir = Path(screenshot_dir)

    def build_message(self, order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> EmailMessage:
        report = build_failure_report(order, error, artifact_ref)
        message = EmailMessage()
        message["Subject"] = report.subject
        message["From"] = self.settings.from_address
        message["To"] = ", ".join(self.settings.to_addresses)
        message.set_content(report.text)
        message.add_alternative(report.html, subtype="html")

        screenshot = self._screenshot_path(artifact_ref)
        if screenshot is not None:
            message.add_attachment(
                screenshot.read_bytes(), maintype="image", subtype="png", filename=screenshot.name
            )
        return message

    def _screenshot_path(self, artifact_ref: Optional[str]) -> Optional[Path]:
        if not artifact_ref:
            return None
        # "/screenshots/<file>" and bare file names both resolve to screenshot_dir/<file>
        path = self.screenshot_dir / Path(artifact_ref).name
        return path if path.is_file() else None

    def notify_failure(self, order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> bool:
        if not self.settings.smtp_host or not self.settings.to_addresses:
            logger.warning("Email escalation not configured; skipping order %s", order.order_id)
            return False
        try:
            username, password = get_smtp_credentials(self.settings)
            message = self.build_message(order, error, artifact_ref)
            with smtplib.SMTP(
                self.settings.smtp_host, self.settings.smtp_port, timeout=self.settings.timeout_seconds
            ) as smtp:
                if self.settings.smtp_use_tls:
                    smtp.starttls()
                if username and password:
                    smtp.login(username, password)
                smtp.send_message(message)
        except CredentialsMissing as e:
            logger.error("Email escalation for order %s not sent: %s", order.order_id, e)
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email escalation for order %s failed: %s", order.order_id, e)
            return False
        logger.info("Escalation email for order %s sent to %s", order.order_id, ", ".join(self.settings.to_addresses))
        return True


class CompositeEscalationNotifier(EscalationNotifier):
    """Sends to every notifier; delivered when at least one succeeds."""

    def __init__(self, notifiers: Sequence[EscalationNotifier]) -> None:
        self.notifiers = list(notifiers)

    def notify_failure(self, order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> bool:
        results = [notifier.notify_failure(order, error, artifact_ref) for notifier in self.notifiers]
        return any(results)


def create_notifier(config: Config) -> EscalationNotifier:
    """Notifier chain for the configuration: always log/file, email when enabled."""
    notifiers: list[EscalationNotifier] = [LoggingEscalationNotifier(config.notifications.escalation_dir)]
    if config.notifications.email_enabled:
        notifiers.append(EmailEscalationNotifier(config.notifications, config.automation.screenshot_dir))
    if len(notifiers) == 1:
        return notifiers[0]
    return CompositeEscalationNotifier(notifiers)
