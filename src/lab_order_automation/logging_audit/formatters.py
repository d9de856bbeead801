"""Log formatters, including redaction of patient identifiers."""

import logging
import re
from typing import List, Tuple


class PIIRedactingFormatter(logging.Formatter):
    """Formatter that redacts patient identifiers from log output.

    Lab orders carry names, dates of birth and health-plan member IDs. When
    redaction is enabled these are replaced with placeholders before the
    record reaches any handler.

    Attributes:
        redact_pii: Whether to enable PII redaction
        patterns: List of (regex_pattern, replacement_text) tuples

    Example:
        >>> formatter = PIIRedactingFormatter(redact_pii=True)
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(formatter)
    """

    def __init__(
        self,
        fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt: str | None = None,
        redact_pii: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.redact_pii = redact_pii

        self.patterns: List[Tuple[re.Pattern[str], str]] = [
            # 123-45-6789
            (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN-REDACTED]"),
            # name="Jeremy Montoya", name=Montoya
            (re.compile(r"name=[\"']?([^\"'|,]+)[\"']?"), "name=[NAME-REDACTED]"),
            # "Patient: Jeremy Montoya"
            (
                re.compile(r"(Patient|Name):\s+([A-Z][a-zA-Z'-]+(?:\s+[A-Z][a-zA-Z'-]+)+)"),
                r"\1: [NAME-REDACTED]",
            ),
            # dob=1984-07-17, dob=19840717
            (re.compile(r"dob=[\d/-]+"), "dob=[DOB-REDACTED]"),
            # medicaid_id=0123456789, member_id=ABC123
            (
                re.compile(r"((?:medicaid|member|external|verified)_id)=([A-Za-z0-9]+)"),
                r"\1=[ID-REDACTED]",
            ),
        ]

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.redact_pii:
            for pattern, replacement in self.patterns:
                formatted = pattern.sub(replacement, formatted)

        return formatted
