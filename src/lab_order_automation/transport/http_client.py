"""HTTP session factory for the clearinghouse exchange.

Sessions enforce TLS 1.2+ and keep a bounded connection pool. They never
retry: retry policy belongs to the order orchestrator, and an eligibility
inquiry must be sent at most once per call.
"""

import logging
import ssl

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from urllib3.util.ssl_ import create_urllib3_context

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 10


class TLS12Adapter(HTTPAdapter):
    """Force TLS 1.2+ for HTTPS connections.

    Example:
        >>> session = requests.Session()
        >>> session.mount("https://", TLS12Adapter())
    """

    def init_poolmanager(self, *args, **kwargs):
        context = create_urllib3_context()
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        kwargs["ssl_context"] = context
        return super().init_poolmanager(*args, **kwargs)


def create_session(max_connections: int = DEFAULT_MAX_CONNECTIONS, verify_tls: bool = True) -> requests.Session:
    """Create a pooled session with TLS 1.2+ and retries disabled.

    Args:
        max_connections: Pool size per host
        verify_tls: Verify server certificates

    Returns:
        Configured requests.Session. Caller is responsible for closing.
    """
    if max_connections < 1:
        raise ValueError(f"max_connections must be >= 1, got {max_connections}")

    no_retries = Retry(total=0, connect=0, read=0, redirect=0, status=0, raise_on_status=False)
    https_adapter = TLS12Adapter(
        pool_connections=max_connections,
        pool_maxsize=max_connections,
        pool_block=True,
        max_retries=no_retries,
    )
    http_adapter = HTTPAdapter(
        pool_connections=max_connections,
        pool_maxsize=max_connections,
        pool_block=True,
        max_retries=no_retries,
    )

    session = requests.Session()
    session.mount("https://", https_adapter)
    session.mount("http://", http_adapter)
    session.verify = verify_tls

    if not verify_tls:
        logger.warning("TLS certificate verification is disabled for clearinghouse requests")

    logger.debug("Created HTTP session with pool_maxsize=%d", max_connections)
    return session
