"""Clearinghouse transport: envelope, POST, payload extraction.

Every exchange is persisted to the audit directory with the password masked.
Persistence is a side channel: if it fails, a warning is logged and the
exchange result is returned unchanged.
"""

import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests

from lab_order_automation.config.schema import ClearinghouseConfig
from lab_order_automation.eligibility.core_envelope import (
    CONTENT_TYPE,
    SOAP_ACTION,
    build_request_envelope,
    extract_payload,
    mask_credentials,
)
from lab_order_automation.logging_audit import log_transaction
from lab_order_automation.utils.exceptions import TransportError, TransportRejected, TransportTimeout

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_CAP = 10.0


class ClearinghouseTransport:
    """Sends one 270 and returns the raw 271 payload.

    Attributes:
        config: Clearinghouse settings (endpoint, IDs, timeout, audit directory)
        session: HTTP session used for the POST

    Example:
        >>> transport = ClearinghouseTransport(config.clearinghouse, create_session())
        >>> raw_271 = transport.send(edi_270, "user", "secret")
    """

    def __init__(self, config: ClearinghouseConfig, session: requests.Session) -> None:
        self.config = config
        self.session = session

    @property
    def timeout(self) -> tuple[float, float]:
        total = self.config.timeout_seconds
        return (min(CONNECT_TIMEOUT_CAP, total), total)

    def send(self, edi_payload: str, username: str, password: str) -> str:
        """Exchange a 270 for a 271.

        Args:
            edi_payload: 270 interchange text
            username: Web-service username
            password: Web-service password

        Returns:
            Raw 271 payload text

        Raises:
            TransportTimeout: If no response arrives within the timeout
            TransportRejected: On a non-success HTTP status, SOAP fault or CORE error
            PayloadNotFound: If the response envelope has no extractable payload
            TransportError: On connection failures
        """
        request = build_request_envelope(
            edi_payload,
            username=username,
            password=password,
            sender_id=self.config.sender_id,
            receiver_id=self.config.receiver_id,
        )
        masked_request = mask_credentials(request.xml)
        headers = {"Content-Type": CONTENT_TYPE, "Action": SOAP_ACTION}

        logger.info("Sending 270 to %s (payload_id=%s)", self.config.endpoint_url, request.payload_id)
        start = time.monotonic()
        response_text: Optional[str] = None
        status = "failure"

        try:
            try:
                response = self.session.post(
                    self.config.endpoint_url,
                    data=request.xml.encode("utf-8"),
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.Timeout as e:
                raise TransportTimeout(
                    f"Clearinghouse request timed out after {self.config.timeout_seconds:g} seconds"
                ) from e
            except requests.RequestException as e:
                raise TransportError(f"Clearinghouse request failed: {e}") from e

            response_text = response.text
            if response.status_code >= 400:
                logger.error("Clearinghouse error response: %s", response_text[:500])
                raise TransportRejected(
                    f"Clearinghouse API error: {response.status_code} {response.reason}",
                    status_code=response.status_code,
                )

            payload = extract_payload(response_text)
            status = "success"
            return payload
        finally:
            elapsed = time.monotonic() - start
            logger.debug("Clearinghouse exchange finished in %.2fs (%s)", elapsed, status)
            log_transaction("ELIGIBILITY_270", masked_request, response_text, status, request.payload_id)
            self._persist_exchange(request.payload_id, masked_request, response_text)

    def _persist_exchange(self, payload_id: str, masked_request: str, response_text: Optional[str]) -> Optional[Path]:
        if not self.config.save_exchanges:
            return None
        try:
            audit_dir = Path(self.config.audit_dir)
            audit_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%dT%H%M%S")
            path = audit_dir / f"exchange-{stamp}-{payload_id or uuid.uuid4()}.xml"
            path.write_text(
                f"<!-- request -->\n{masked_request}\n<!-- response -->\n{response_text or ''}\n",
                encoding="utf-8",
            )
            logger.debug("Exchange saved to %s", path)
            return path
        except OSError as e:
            logger.warning("Could not save clearinghouse exchange: %s", e)
            return None
