"""Main CLI entry point for Lab Order Automation.

This module provides the main Click command group for the
lab-order-automation CLI.
"""

from pathlib import Path
from typing import Optional

import click

from lab_order_automation import __version__
from lab_order_automation.cli.eligibility_commands import eligibility_group
from lab_order_automation.cli.mock_commands import mock_group
from lab_order_automation.cli.order_commands import order_group, portal_group, serve
from lab_order_automation.config import load_config
from lab_order_automation.logging_audit import configure_logging
from lab_order_automation.logging_audit.logger import configure_operation_logging_from_config
from lab_order_automation.utils.exceptions import ConfigurationError


@click.group()
@click.version_option(version=__version__, prog_name="lab-order-automation")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: ./config/config.json)",
)
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG level)")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to log file (overrides config file)",
)
@click.option(
    "--redact-pii",
    is_flag=True,
    help="Redact patient identifiers (names, DOBs, member IDs) from logs",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: bool,
    log_file: Optional[Path],
    redact_pii: bool,
) -> None:
    """Lab Order Automation - eligibility checks and lab portal ordering.

    Verifies Medicaid eligibility over the clearinghouse and places lab
    orders on LabCorp/Quest style portals, pausing for operator confirmation
    before anything is submitted.

    Common usage:

        # Check eligibility for a patient
        lab-order-automation eligibility check --first-name Jeremy --last-name Montoya --dob 1984-07-17

        # Submit an order from a JSON file and confirm it interactively
        lab-order-automation order submit order.json

        # Run the HTTP API
        lab-order-automation serve --port 3001

    Use --help with any command for more information.
    """
    ctx.ensure_object(dict)

    try:
        config_obj = load_config(config)
        ctx.obj["config"] = config_obj
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)

    ctx.obj["verbose"] = verbose
    ctx.obj["redact_pii"] = redact_pii
    ctx.obj["log_file"] = log_file

    # CLI flags > config file > defaults
    log_level = "DEBUG" if verbose else config_obj.logging.level
    log_file_path = log_file if log_file else config_obj.logging.log_file
    redact_pii_setting = redact_pii if redact_pii else config_obj.logging.redact_pii

    configure_logging(level=log_level, log_file=log_file_path, redact_pii=redact_pii_setting)
    if not verbose:
        configure_operation_logging_from_config(config_obj.operation_logging)


cli.add_command(eligibility_group)
cli.add_command(order_group)
cli.add_command(portal_group)
cli.add_command(serve)
cli.add_command(mock_group)


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command()
@click.argument("config_file", type=click.Path(exists=True, path_type=Path))
def validate(config_file: Path) -> None:
    """Validate a configuration file.

    Example:
        lab-order-automation config validate config/config.json
    """
    try:
        config_obj = load_config(config_file)
    except ConfigurationError as e:
        click.echo(click.style("✗", fg="red", bold=True) + " Configuration validation failed")
        click.echo(f"\n{e}", err=True)
        raise click.exceptions.Exit(1)

    click.echo(click.style("✓", fg="green", bold=True) + " Configuration is valid")
    click.echo(f"\nConfiguration file: {config_file}")

    click.echo("\nClearinghouse:")
    click.echo(f"  Endpoint:    {config_obj.clearinghouse.endpoint_url}")
    click.echo(f"  Sender ID:   {config_obj.clearinghouse.sender_id}")
    click.echo(f"  Receiver ID: {config_obj.clearinghouse.receiver_id}")
    click.echo(f"  Payer:       {config_obj.payer.name} ({config_obj.payer.payer_id})")
    click.echo(f"  Provider:    {config_obj.provider.name} (NPI {config_obj.provider.npi})")

    click.echo("\nPortals:")
    if not config_obj.portals:
        click.echo("  None configured")
    for name, profile in sorted(config_obj.portals.items()):
        marker = " (default)" if name == config_obj.default_portal else ""
        click.echo(f"  {name}{marker}: {profile.login_url}")

    automation = config_obj.automation
    click.echo("\nAutomation:")
    click.echo(f"  Headless:    {automation.headless}")
    click.echo(f"  Retries:     {automation.max_retries}")
    click.echo(f"  Session TTL: {automation.session_ttl_seconds:.0f}s (sweep every {automation.sweep_interval_seconds:.0f}s)")
    click.echo(f"  Workers:     {automation.max_concurrent_orders}")

    click.echo("\nLogging:")
    click.echo(f"  Level:       {config_obj.logging.level}")
    click.echo(f"  Log file:    {config_obj.logging.log_file}")
    click.echo(f"  Redact PII:  {config_obj.logging.redact_pii}")


cli.add_command(config)


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"lab-order-automation version {__version__}")


if __name__ == "__main__":
    cli()
