"""Eligibility CLI commands.

Runs a single 270/271 exchange with the configured clearinghouse and prints
the coverage verdict and the demographics the payer holds.
"""

import json
import logging
from datetime import datetime
from typing import Optional

import click

from lab_order_automation.eligibility.service import EligibilityService
from lab_order_automation.models.eligibility import EligibilityResult
from lab_order_automation.orders.intake import parse_eligibility_request
from lab_order_automation.utils.exceptions import (
    ConfigurationError,
    DecodeError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@click.group(name="eligibility")
def eligibility_group() -> None:
    """Medicaid eligibility (X12 270/271) commands."""
    pass


@eligibility_group.command(name="check")
@click.option("--first-name", required=True, help="Patient first name")
@click.option("--last-name", required=True, help="Patient last name")
@click.option(
    "--dob",
    required=True,
    type=click.DateTime(formats=["%Y-%m-%d", "%m/%d/%Y"]),
    help="Date of birth (YYYY-MM-DD or MM/DD/YYYY)",
)
@click.option("--medicaid-id", default=None, help="Medicaid member ID, if known")
@click.option("--fallback-phone", default=None, help="Phone to use when the payer returns none")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def check(
    ctx: click.Context,
    first_name: str,
    last_name: str,
    dob: datetime,
    medicaid_id: Optional[str],
    fallback_phone: Optional[str],
    as_json: bool,
) -> None:
    """Check a patient's coverage with the configured payer.

    Exit Codes:
        0: Check completed (eligible or not)
        1: Validation or configuration error
        2: Clearinghouse exchange failed

    Examples:
        $ lab-order-automation eligibility check --first-name Jeremy --last-name Montoya --dob 1984-07-17
    """
    config = ctx.obj["config"]
    request = {
        "firstName": first_name,
        "lastName": last_name,
        "dateOfBirth": dob.date().isoformat(),
        "medicaidId": medicaid_id,
        "fallbackPhone": fallback_phone,
    }

    try:
        parsed = parse_eligibility_request(request)
        result = EligibilityService(config).check_eligibility(parsed.to_demographics())
    except (ValidationError, ConfigurationError) as e:
        click.echo(click.style("✗ ", fg="red", bold=True) + str(e), err=True)
        raise click.exceptions.Exit(1)
    except (TransportError, DecodeError) as e:
        click.echo(click.style("✗ ", fg="red", bold=True) + f"Eligibility check failed: {e}", err=True)
        raise click.exceptions.Exit(2)

    verified = result.verified_demographics
    if verified is not None and not verified.phone and parsed.fallback_phone:
        result.verified_demographics = verified.with_phone(parsed.fallback_phone)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    _print_result(result)


def _print_result(result: EligibilityResult) -> None:
    if result.is_eligible:
        click.echo(click.style("✓ Eligible", fg="green", bold=True) + f" ({result.plan_category.value})")
    else:
        click.echo(click.style("✗ Not eligible", fg="yellow", bold=True))

    if result.plan_description:
        click.echo(f"  Plan:        {result.plan_description}")
    if result.verified_id:
        click.echo(f"  Member ID:   {result.verified_id}")
    for code in result.rejections:
        click.echo(f"  Rejection:   AAA reason {code}")

    patient = result.verified_demographics
    if patient is None:
        return
    click.echo("\nDemographics on file:")
    click.echo(f"  Name:        {patient.full_name or '-'}")
    click.echo(f"  DOB:         {patient.dob.isoformat() if patient.dob else '-'}")
    click.echo(f"  Address:     {patient.address.one_line() if patient.address else '-'}")
    click.echo(f"  Phone:       {patient.phone or '-'}")
