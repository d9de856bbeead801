"""Flask application exposing the order submission API.

Routes:
    POST /api/portal-automation/submit
    GET  /api/portal-automation/preview/<order_id>
    POST /api/portal-automation/confirm/<order_id>
    POST /api/portal-automation/cancel/<order_id>
    POST /api/portal-automation/retry/<order_id>
    GET  /api/portal-automation/status/<order_id>
    GET  /api/portal-automation/events/<order_id>   (Server-Sent Events)
    POST /api/portal-automation/test-connection/<portal>
    POST /api/lab-orders/check-eligibility
    GET  /screenshots/<name>
    GET  /health
"""

import json
import logging
import queue
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from flask import Blueprint, Flask, Response, current_app, jsonify, request, send_from_directory, stream_with_context

from lab_order_automation import __version__
from lab_order_automation.orders.service import OrderSubmissionService
from lab_order_automation.utils.exceptions import (
    ConfigurationError,
    CredentialsMissing,
    DecodeError,
    InvalidTransitionError,
    LabOrderAutomationError,
    OrderConflictError,
    OrderNotFoundError,
    SessionExpired,
    TransportError,
    TransportTimeout,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Seconds between SSE keep-alive comments
KEEPALIVE_SECONDS = 15.0

# Most specific first
_STATUS_CODES: list[tuple[type, int]] = [
    (ValidationError, 400),
    (OrderNotFoundError, 404),
    (OrderConflictError, 409),
    (InvalidTransitionError, 409),
    (SessionExpired, 410),
    (CredentialsMissing, 503),
    (ConfigurationError, 400),
    (TransportTimeout, 504),
    (TransportError, 502),
    (DecodeError, 502),
]

orders_bp = Blueprint("portal_automation", __name__, url_prefix="/api/portal-automation")
eligibility_bp = Blueprint("lab_orders", __name__, url_prefix="/api/lab-orders")


def _service() -> OrderSubmissionService:
    return current_app.config["ORDER_SERVICE"]


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


@orders_bp.route("/submit", methods=["POST"])
def submit_order():
    accepted = _service().submit(_json_body())
    return jsonify({"success": True, **accepted}), 202


@orders_bp.route("/preview/<order_id>", methods=["GET"])
def get_preview(order_id: str):
    return jsonify({"success": True, **_service().get_preview(order_id)})


@orders_bp.route("/confirm/<order_id>", methods=["POST"])
def confirm_order(order_id: str):
    result = _service().confirm(order_id)
    return jsonify({"success": result["status"] == "submitted", **result})


@orders_bp.route("/cancel/<order_id>", methods=["POST"])
def cancel_order(order_id: str):
    return jsonify({"success": True, **_service().cancel(order_id)})


@orders_bp.route("/retry/<order_id>", methods=["POST"])
def retry_order(order_id: str):
    return jsonify({"success": True, **_service().retry(order_id)}), 202


@orders_bp.route("/status/<order_id>", methods=["GET"])
def get_status(order_id: str):
    return jsonify({"success": True, **_service().get_status(order_id)})


@orders_bp.route("/events/<order_id>", methods=["GET"])
def stream_events(order_id: str):
    service = _service()
    service.store.get(order_id)
    events = service.events
    subscriber = events.subscribe(order_id)

    def generate() -> Iterator[str]:
        try:
            while True:
                try:
                    event = subscriber.get(timeout=KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: status\ndata: {json.dumps(event.to_dict())}\n\n"
                if event.terminal:
                    return
        finally:
            events.unsubscribe(order_id, subscriber)

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@orders_bp.route("/test-connection/<portal>", methods=["POST"])
def test_connection(portal: str):
    result = _service().test_connection(portal)
    return jsonify(result), 200 if result["success"] else 502


@eligibility_bp.route("/check-eligibility", methods=["POST"])
def check_eligibility():
    result = _service().check_eligibility(_json_body())
    return jsonify({"success": True, **result.to_dict()})


def _handle_error(error: LabOrderAutomationError):
    status = next((code for error_type, code in _STATUS_CODES if isinstance(error, error_type)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.path, type(error).__name__, error)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.path, status, error)
    return jsonify({"success": False, "error": type(error).__name__, "message": str(error)}), status


def create_app(service: OrderSubmissionService) -> Flask:
    """Build the Flask app around an order service.

    Args:
        service: Order submission service; the caller owns start/shutdown

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    app.config["ORDER_SERVICE"] = service
    app.config["SCREENSHOT_DIR"] = Path(service.config.automation.screenshot_dir).resolve()
    started_at = datetime.now(timezone.utc)

    app.register_blueprint(orders_bp)
    app.register_blueprint(eligibility_bp)
    app.register_error_handler(LabOrderAutomationError, _handle_error)

    @app.route("/screenshots/<path:name>", methods=["GET"])
    def screenshot(name: str):
        return send_from_directory(app.config["SCREENSHOT_DIR"], name, mimetype="image/png")

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(
            {
                "status": "healthy",
                "version": __version__,
                "uptime_seconds": int((datetime.now(timezone.utc) - started_at).total_seconds()),
                "awaiting_confirmation": len(service.registry),
                "portals": sorted(service.config.portals),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    @app.before_request
    def log_request():
        logger.debug("%s %s", request.method, request.path)

    return app


def run_server(service: OrderSubmissionService, host: str, port: int, debug: bool = False) -> None:
    """Serve the API until interrupted; starts and stops the service."""
    app = create_app(service)
    service.start()
    logger.info("Lab order automation API listening on http://%s:%d", host, port)
    try:
        app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)
    finally:
        service.shutdown(wait=False)
