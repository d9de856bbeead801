"""Order, portal and API server CLI commands.

``order submit`` runs one order in-process: it fills the portal form, shows
the preview, and asks the operator to confirm before the portal submit
button is pressed.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import click

from lab_order_automation.api.app import run_server
from lab_order_automation.orders.service import OrderSubmissionService
from lab_order_automation.utils.exceptions import (
    ConfigurationError,
    LabOrderAutomationError,
    SessionExpired,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Login, navigation and form fill, including retries
PREVIEW_WAIT_SECONDS = 600.0


def _load_order_file(order_file: Path) -> dict[str, Any]:
    try:
        data = json.loads(order_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Cannot read order file {order_file}: {e}")
    if not isinstance(data, dict):
        raise click.ClickException(f"Order file {order_file} must contain a JSON object")
    return data


def _print_preview(preview: dict[str, Any]) -> None:
    patient = preview["patient"]
    provider = preview["provider"]
    click.echo("=" * 50)
    click.echo(f"Order preview: {preview['orderId']}")
    click.echo("=" * 50)
    click.echo(f"Provider:      {provider['name']}" + (f" (NPI {provider['npi']})" if provider.get("npi") else ""))
    click.echo(f"Patient:       {patient['firstName']} {patient['lastName']}")
    click.echo(f"DOB:           {patient['dateOfBirth'] or '-'}")
    click.echo(f"Phone:         {patient['phone'] or '-'}")
    address = patient.get("address") or {}
    if address:
        click.echo(
            f"Address:       {address.get('street') or ''}, {address.get('city') or ''} "
            f"{address.get('state') or ''} {address.get('postalCode') or ''}".rstrip()
        )
    tests = ", ".join(t["code"] or t["name"] for t in preview["tests"])
    click.echo(f"Tests:         {tests}")
    click.echo(f"Diagnoses:     {', '.join(preview['diagnosisCodes'])}")
    if preview.get("specialInstructions"):
        click.echo(f"Instructions:  {preview['specialInstructions']}")
    eligibility = preview.get("eligibility")
    if eligibility:
        verdict = "eligible" if eligibility["isEligible"] else "NOT eligible"
        click.echo(f"Eligibility:   {verdict} ({eligibility['planCategory']})")
    else:
        click.echo("Eligibility:   not verified")
    click.echo(f"Screenshot:    {preview['previewArtifactRef'] or 'not captured'}")
    click.echo("=" * 50)


def _print_outcome(status: dict[str, Any]) -> None:
    outcome = status["status"]
    if outcome == "submitted":
        click.echo(
            click.style("✓ Order submitted", fg="green", bold=True)
            + f" - confirmation {status['confirmationId']}"
        )
    elif outcome == "cancelled":
        reason = f" ({status['lastError']})" if status.get("lastError") else ""
        click.echo(click.style("⚠ Order cancelled", fg="yellow", bold=True) + reason)
    elif outcome == "confirmed":
        click.echo(click.style("⚠ Submission still in progress", fg="yellow", bold=True) + "; check the portal")
    else:
        click.echo(click.style("✗ Order failed", fg="red", bold=True) + f": {status.get('lastError')}")


@click.group(name="order")
def order_group() -> None:
    """Lab order commands."""
    pass


@order_group.command(name="submit")
@click.argument("order_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--portal", default=None, help="Portal profile (overrides the order file)")
@click.option("--yes", "-y", is_flag=True, help="Submit without asking for confirmation")
@click.option(
    "--timeout",
    type=float,
    default=PREVIEW_WAIT_SECONDS,
    show_default=True,
    help="Seconds to wait for the preview",
)
@click.pass_context
def submit(ctx: click.Context, order_file: Path, portal: Optional[str], yes: bool, timeout: float) -> None:
    """Fill a portal order from ORDER_FILE and confirm it.

    ORDER_FILE holds the same JSON object accepted by
    POST /api/portal-automation/submit.

    Exit Codes:
        0: Order submitted, or cancelled by the operator
        1: Invalid order or configuration
        2: Order failed

    Examples:
        $ lab-order-automation order submit order.json

        $ lab-order-automation order submit order.json --portal quest --yes
    """
    config = ctx.obj["config"]
    payload = _load_order_file(order_file)
    if portal:
        payload["portal"] = portal

    with OrderSubmissionService(config) as service:
        try:
            accepted = service.submit(payload)
        except (ValidationError, ConfigurationError) as e:
            click.echo(click.style("✗ ", fg="red", bold=True) + str(e), err=True)
            raise click.exceptions.Exit(1)

        order_id = accepted["orderId"]
        click.echo(f"Order {order_id} accepted; filling the {payload.get('portal') or config.default_portal} form...")

        status = service.wait(order_id, timeout=timeout, until_preview=True)
        if status["status"] == "preview":
            _print_preview(service.get_preview(order_id))
            try:
                if yes or click.confirm("Submit this order to the lab?", default=False):
                    status = service.confirm(order_id)
                else:
                    status = service.cancel(order_id)
            except SessionExpired as e:
                click.echo(click.style("✗ ", fg="red", bold=True) + str(e), err=True)
                status = service.get_status(order_id)
        elif status["status"] == "processing":
            click.echo(f"Preview not ready after {timeout:.0f}s; cancelling", err=True)
            status = service.cancel(order_id)

    _print_outcome(status)
    if status["status"] == "failed":
        raise click.exceptions.Exit(2)


@click.group(name="portal")
def portal_group() -> None:
    """Lab portal commands."""
    pass


@portal_group.command(name="test-connection")
@click.argument("portal")
@click.pass_context
def test_connection(ctx: click.Context, portal: str) -> None:
    """Log in to PORTAL with the configured credentials and log out.

    Example:
        $ lab-order-automation portal test-connection labcorp
    """
    with OrderSubmissionService(ctx.obj["config"]) as service:
        result = service.test_connection(portal)

    if result["success"]:
        click.echo(click.style("✓ ", fg="green", bold=True) + f"{portal}: {result['message']}")
        return
    click.echo(click.style("✗ ", fg="red", bold=True) + f"{portal}: {result['message']}", err=True)
    raise click.exceptions.Exit(1)


@click.command(name="serve")
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", type=int, default=None, help="Port (overrides config)")
@click.option("--debug", is_flag=True, help="Enable Flask debug mode")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], debug: bool) -> None:
    """Run the order submission HTTP API.

    Example:
        $ lab-order-automation serve --port 3001
    """
    config = ctx.obj["config"]
    host = host or config.api.host
    port = port or config.api.port
    click.echo(f"Lab order automation API on http://{host}:{port} (Press Ctrl+C to stop)")
    try:
        run_server(OrderSubmissionService(config), host=host, port=port, debug=debug)
    except KeyboardInterrupt:
        click.echo("\n\nServer stopped by user.")
    except LabOrderAutomationError as e:
        raise click.ClickException(str(e))
