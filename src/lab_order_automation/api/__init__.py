"""HTTP API for the order-entry UI."""

from lab_order_automation.api.app import create_app, run_server

__all__ = ["create_app", "run_server"]
