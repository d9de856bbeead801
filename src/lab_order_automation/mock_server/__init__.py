"""Mock clearinghouse for local testing of the eligibility exchange."""

from lab_order_automation.mock_server.app import create_app, run_server
from lab_order_automation.mock_server.clearinghouse_endpoint import build_271_echo
from lab_order_automation.mock_server.config import ClearinghouseBehavior, MockServerConfig, PayloadStyle, load_config

__all__ = [
    "ClearinghouseBehavior",
    "MockServerConfig",
    "PayloadStyle",
    "build_271_echo",
    "create_app",
    "load_config",
    "run_server",
]
