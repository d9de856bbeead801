"""Integration test fixtures.

The clearinghouse is the mock Flask app reached through its test client, and
the portal is the scripted fake page from ``tests.fakes``; everything in
between (270 encoding, CORE envelope, transport, 271 decoding, orchestration,
registry and API) runs for real.
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

import pytest
from flask.testing import FlaskClient

from lab_order_automation.api.app import create_app
from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.eligibility.transport import ClearinghouseTransport
from lab_order_automation.mock_server.app import create_app as create_mock_app
from lab_order_automation.mock_server.config import ClearinghouseBehavior, MockServerConfig
from lab_order_automation.notifications.escalation import LoggingEscalationNotifier
from lab_order_automation.orders.service import OrderSubmissionService
from tests.fakes import build_portal_page

logger = logging.getLogger(__name__)


class FlaskClientResponse:
    """The parts of ``requests.Response`` the transport reads."""

    def __init__(self, flask_response) -> None:
        self.status_code = flask_response.status_code
        self.reason = flask_response.status.split(" ", 1)[-1]
        self.text = flask_response.get_data(as_text=True)


class FlaskClientSession:
    """requests-style session that posts into a Flask test client."""

    def __init__(self, client: FlaskClient) -> None:
        self.client = client
        self.requests: list[dict] = []

    def post(self, url: str, data: bytes, headers: dict, timeout: Optional[tuple] = None) -> FlaskClientResponse:
        self.requests.append({"url": url, "headers": headers, "timeout": timeout})
        response = self.client.post(urlsplit(url).path, data=data, headers=headers)
        return FlaskClientResponse(response)

@pytest.fixture
def mock_clearinghouse(tmp_path) -> FlaskClient:
    config = MockServerConfig(
        log_path=str(tmp_path / "mock-server.log"),
        clearinghouse_behavior=ClearinghouseBehavior(phone=None),
    )
    app = create_mock_app(config)
    app.config["TESTING"] = True
    return app.test_client()

@pytest.fixture
def mock_behavior(mock_clearinghouse) -> ClearinghouseBehavior:
    """Live behavior of the mock; changes apply to the next request."""
    return mock_clearinghouse.application.config["MOCK_CONFIG"].clearinghouse_behavior

@pytest.fixture
def clearinghouse_credentials(monkeypatch) -> None:
    monkeypatch.setenv("OFFICE_ALLY_USERNAME", "moonlit")
    monkeypatch.setenv("OFFICE_ALLY_PASSWORD", "s3cret")

@pytest.fixture
def clearinghouse_session(mock_clearinghouse) -> FlaskClientSession:
    return FlaskClientSession(mock_clearinghouse)

@pytest.fixture
def eligibility_service(app_config, clearinghouse_session, clearinghouse_credentials) -> EligibilityService:
    transport = ClearinghouseTransport(app_config.clearinghouse, clearinghouse_session)
    return EligibilityService(app_config, transport=transport)

@pytest.fixture
def escalation_dir(app_config):
    return app_config.notifications.escalation_dir

@pytest.fixture
def make_order_service(app_config, eligibility_service, session_factory, escalation_dir):
    """Build a started OrderSubmissionService over fake portal pages."""
    services = []

    def _make(page_factory=build_portal_page, pages: Optional[list] = None) -> OrderSubmissionService:
        service = OrderSubmissionService(
            app_config,
            notifier=LoggingEscalationNotifier(escalation_dir),
            eligibility_service=eligibility_service,
            session_factory=session_factory(page_factory, pages),
        )
        service.start()
        services.append(service)
        return service

    yield _make
    for service in services:
        service.shutdown()

@pytest.fixture
def api_client(make_order_service, portal_credentials):
    """Order API test client; the service is exposed as ``api_client.service``."""
    service = make_order_service()
    app = create_app(service)
    app.config["TESTING"] = True
    client = app.test_client()
    client.service = service
    return client
