"""CLI commands for the mock clearinghouse."""

import logging
from pathlib import Path
from typing import Optional

import click
import requests

from lab_order_automation.mock_server.app import run_server
from lab_order_automation.mock_server.config import load_config

logger = logging.getLogger(__name__)


@click.group(name="mock")
def mock_group() -> None:
    """Manage the mock clearinghouse.

    The mock answers CORE real-time 270 requests with a 271 echoing the
    inquiry, for testing without clearinghouse credentials:

    - /health - Health check endpoint
    - /TransactionService/rtx.svc - CORE real-time endpoint
    """


@mock_group.command(name="start")
@click.option("--http", "protocol", flag_value="http", default=True, help="Start HTTP server (default)")
@click.option("--https", "protocol", flag_value="https", help="Start HTTPS server (requires certificates)")
@click.option("--port", type=int, help="Server port (overrides config file)")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (default: mocks/config.json)",
)
@click.option("--debug", is_flag=True, help="Enable debug mode")
def start_server(protocol: str, port: Optional[int], config: Optional[Path], debug: bool) -> None:
    """Start the mock clearinghouse in the foreground.

    Examples:

        lab-order-automation mock start

        lab-order-automation mock start --port 9090 --config mocks/config.json
    """
    try:
        server_config = load_config(config)
        if port is None:
            port = server_config.http_port
        if not 1 <= port <= 65535:
            raise click.ClickException(f"Invalid port {port}. Port must be between 1 and 65535.")

        behavior = server_config.clearinghouse_behavior
        click.echo("=" * 50)
        click.echo("Mock Clearinghouse")
        click.echo("=" * 50)
        click.echo(f"Protocol: {protocol.upper()}")
        click.echo(f"Host: {server_config.host}")
        click.echo(f"Port: {port}")
        click.echo(f"Health Check: {protocol}://{server_config.host}:{port}/health")
        click.echo(f"Real-time: {protocol}://{server_config.host}:{port}{server_config.clearinghouse_endpoint}")
        click.echo(f"Coverage: {'active' if behavior.coverage_active else 'inactive'} ({behavior.plan_description})")
        click.echo("=" * 50)
        click.echo("")
        click.echo("Starting server... (Press Ctrl+C to stop)")

        run_server(host=server_config.host, port=port, protocol=protocol, config=server_config, debug=debug)
    except FileNotFoundError as e:
        raise click.ClickException(str(e))
    except ValueError as e:
        raise click.ClickException(f"Configuration error: {e}")
    except KeyboardInterrupt:
        click.echo("\n\nServer stopped by user.")


@mock_group.command(name="status")
@click.option("--url", default="http://localhost:8080", show_default=True, help="Base URL of the mock")
def server_status(url: str) -> None:
    """Check whether a mock clearinghouse is answering."""
    health_url = f"{url.rstrip('/')}/health"
    try:
        response = requests.get(health_url, timeout=3, verify=False)
    except requests.RequestException as e:
        click.echo(f"✗ Mock clearinghouse not reachable at {health_url}: {e}")
        raise click.exceptions.Exit(1)

    if response.status_code != 200:
        click.echo(f"⚠️  Health check returned {response.status_code}")
        raise click.exceptions.Exit(1)

    health = response.json()
    click.echo(f"✓ Mock clearinghouse is {health.get('status', 'up')} (version {health.get('version', '?')})")
    click.echo(f"  Uptime:   {health.get('uptime_seconds', 0)}s")
    click.echo(f"  Requests: {health.get('request_count', 0)}")
    for endpoint in health.get("endpoints", []):
        click.echo(f"  Endpoint: {endpoint}")
