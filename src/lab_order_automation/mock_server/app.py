"""Flask application for the mock clearinghouse."""

import logging
import signal
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request

from lab_order_automation import __version__
from lab_order_automation.mock_server.clearinghouse_endpoint import fault_response, register_clearinghouse_endpoint
from lab_order_automation.mock_server.config import MockServerConfig, load_config

logger = logging.getLogger("lab_order_automation.mock_server")


def setup_logging(config: MockServerConfig) -> logging.Logger:
    """Configure logging for the mock server with rotation.

    Args:
        config: Mock server configuration

    Returns:
        Configured logger instance
    """
    mock_logger = logging.getLogger("lab_order_automation.mock_server")
    mock_logger.setLevel(config.log_level)
    mock_logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    mock_logger.addHandler(console_handler)

    log_path = Path(config.log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_path, maxBytes=10 * 1024 * 1024, backupCount=5)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    mock_logger.addHandler(file_handler)

    return mock_logger


def create_app(config: MockServerConfig) -> Flask:
    """Build the mock clearinghouse app.

    Args:
        config: Mock server configuration

    Returns:
        Flask app with /health and the real-time endpoint
    """
    app = Flask(__name__)
    started_at = datetime.now(timezone.utc)
    request_count = {"value": 0}

    @app.before_request
    def log_request():
        request_count["value"] += 1
        logger.info(
            "Request #%d: %s %s (Content-Length: %d)",
            request_count["value"],
            request.method,
            request.path,
            request.content_length or 0,
        )

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify(
            {
                "status": "healthy",
                "version": __version__,
                "port": config.http_port,
                "endpoints": ["/health", config.clearinghouse_endpoint],
                "uptime_seconds": int((datetime.now(timezone.utc) - started_at).total_seconds()),
                "request_count": request_count["value"],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ), 200

    @app.errorhandler(400)
    def bad_request(error):
        return fault_response("soap:Sender", f"Bad Request: {error}", 400)

    @app.errorhandler(500)
    def internal_error(error):
        return fault_response("soap:Receiver", f"Internal Server Error: {error}", 500)

    register_clearinghouse_endpoint(app, config)
    return app


def setup_graceful_shutdown() -> None:
    """Register SIGTERM/SIGINT handlers; only possible on the main thread."""

    def shutdown_handler(signum, frame):
        logger.info("Received shutdown signal (%s), shutting down", signum)
        sys.exit(0)

    try:
        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)
    except ValueError as e:
        logger.warning("Could not register signal handlers (not in main thread): %s", e)


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    protocol: str = "http",
    config: Optional[MockServerConfig] = None,
    debug: bool = False,
) -> None:
    """Run the mock clearinghouse.

    Raises:
        FileNotFoundError: If HTTPS is requested but the certificate or key is missing
    """
    if config is None:
        config = load_config()
    config = config.model_copy(update={"http_port": port})

    setup_logging(config)
    setup_graceful_shutdown()
    app = create_app(config)

    ssl_context = None
    if protocol.lower() == "https":
        cert_path = Path(config.cert_path)
        key_path = Path(config.key_path)
        if not cert_path.exists():
            raise FileNotFoundError(f"Certificate not found at '{cert_path}'.")
        if not key_path.exists():
            raise FileNotFoundError(f"Private key not found at '{key_path}'.")
        ssl_context = (str(cert_path), str(key_path))
        logger.info("HTTPS enabled with certificate: %s", cert_path)

    logger.info("Starting mock clearinghouse on %s://%s:%d%s", protocol, host, port, config.clearinghouse_endpoint)
    app.run(host=host, port=port, debug=debug, ssl_context=ssl_context, use_reloader=False)
