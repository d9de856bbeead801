"""Unit tests for logging_audit module."""

import logging

import pytest

from lab_order_automation.logging_audit import (
    PIIRedactingFormatter,
    configure_logging,
    configure_operation_logging,
    get_logger,
    get_operation_logger,
    log_audit_event,
    log_transaction,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Keep handler and level changes from leaking into other tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, message, None, None)


class TestConfigureLogging:
    """Test logging configuration."""

    def test_configure_logging_creates_file(self, tmp_path):
        """Test logging configuration creates log file."""
        # Arrange
        log_file = tmp_path / "nested" / "test.log"

        # Act
        configure_logging(level="INFO", log_file=log_file, redact_pii=False)
        get_logger(__name__).info("Test message")

        # Assert
        assert log_file.exists()
        assert "Test message" in log_file.read_text()

    def test_file_handler_records_debug(self, tmp_path):
        """Test the file handler records DEBUG while the console uses the requested level."""
        # Arrange
        log_file = tmp_path / "test.log"

        # Act
        configure_logging(level="WARNING", log_file=log_file)
        get_logger(__name__).debug("Debug message")

        # Assert
        assert "Debug message" in log_file.read_text()
        console = [
            h for h in logging.getLogger().handlers
            if isinstance(h, logging.StreamHandler) and not hasattr(h, "baseFilename")
        ]
        assert console[-1].level == logging.WARNING

    def test_invalid_level(self, tmp_path):
        """Test an unknown level raises ValueError."""
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="CHATTY", log_file=tmp_path / "test.log")

    def test_redaction_applied_to_file(self, tmp_path):
        """Test that redact_pii reaches the file output."""
        # Arrange
        log_file = tmp_path / "test.log"

        # Act
        configure_logging(level="INFO", log_file=log_file, redact_pii=True)
        get_logger(__name__).info("Checking medicaid_id=0123456789 dob=1984-07-17")

        # Assert
        content = log_file.read_text()
        assert "0123456789" not in content
        assert "medicaid_id=[ID-REDACTED]" in content
        assert "dob=[DOB-REDACTED]" in content


class TestPIIRedactingFormatter:
    """Test PII redaction."""

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("Patient: Jeremy Montoya", "Patient: [NAME-REDACTED]"),
            ('name="Jeremy Montoya"', "name=[NAME-REDACTED]"),
            ("ssn 123-45-6789", "ssn [SSN-REDACTED]"),
            ("member_id=ABC123", "member_id=[ID-REDACTED]"),
        ],
    )
    def test_patterns(self, message, expected):
        """Test each identifier pattern is replaced."""
        formatter = PIIRedactingFormatter(fmt="%(message)s", redact_pii=True)

        assert formatter.format(_record(message)) == expected

    def test_disabled_by_default(self):
        """Test the formatter leaves messages alone unless enabled."""
        formatter = PIIRedactingFormatter(fmt="%(message)s")

        assert formatter.format(_record("Patient: Jeremy Montoya")) == "Patient: Jeremy Montoya"


class TestOperationLogging:
    """Test per-subsystem log levels."""

    def test_levels_applied(self):
        """Test each subsystem logger receives its level."""
        # Act
        configure_operation_logging(portal_log_level="DEBUG", eligibility_log_level="WARNING")

        # Assert
        assert get_operation_logger("portal").level == logging.DEBUG
        assert get_operation_logger("eligibility").level == logging.WARNING
        assert get_operation_logger("orders").level == logging.INFO

        configure_operation_logging()

    def test_unknown_operation(self):
        """Test an unknown subsystem name raises ValueError."""
        with pytest.raises(ValueError, match="Unknown operation: pix"):
            get_operation_logger("pix")

    def test_invalid_level(self):
        """Test an invalid subsystem level raises ValueError naming the subsystem."""
        with pytest.raises(ValueError, match="for notifications"):
            configure_operation_logging(notifications_log_level="LOUD")


class TestAudit:
    """Test audit and transaction logging."""

    def test_success_logged_at_info(self, caplog):
        """Test a successful event is INFO with fields in order."""
        # Act
        with caplog.at_level(logging.INFO, logger="lab_order_automation.logging_audit.audit"):
            log_audit_event(
                "ORDER_CONFIRMED",
                {"confirmation_id": "1234567", "order_id": "ORD-1", "status": "success", "correlation_id": "c-1"},
            )

        # Assert
        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.getMessage() == (
            "AUDIT [ORDER_CONFIRMED] | status=success | order_id=ORD-1 | confirmation_id=1234567 | correlation_id=c-1"
        )

    def test_failure_logged_at_error(self, caplog):
        """Test a failure event is ERROR."""
        with caplog.at_level(logging.INFO, logger="lab_order_automation.logging_audit.audit"):
            log_audit_event("ORDER_FAILED", {"status": "failure", "order_id": "ORD-1", "category": "TRANSIENT"})

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "category=TRANSIENT" in record.getMessage()

    def test_transaction_returns_correlation_id(self, caplog):
        """Test the transaction summary carries sizes and the correlation ID."""
        # Act
        with caplog.at_level(logging.DEBUG, logger="lab_order_automation.logging_audit.audit"):
            correlation_id = log_transaction("ELIGIBILITY_270", "<req/>", None, status="failure")

        # Assert
        summary = caplog.records[0].getMessage()
        assert correlation_id in summary
        assert "status=failure" in summary
        assert "request_size=6 bytes" in summary
        assert "response_size=0 bytes" in summary
