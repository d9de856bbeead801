"""Human-readable failure report for an order that could not be automated.

The report reproduces every field the portal form needed so a staff member
can enter the order by hand without opening another system.
"""

import html
from dataclasses import dataclass
from typing import Optional

from lab_order_automation.models.order import PortalOrder
from lab_order_automation.utils.exceptions import create_error_info


@dataclass(frozen=True)
class FailureReport:
    """Rendered escalation content.

    Attributes:
        subject: One-line summary
        text: Plain-text body
        html: HTML body
    """

    subject: str
    text: str
    html: str


def _field_rows(order: PortalOrder) -> list[tuple[str, str]]:
    patient = order.patient
    provider = order.provider.name
    if order.provider.npi:
        provider = f"{provider} (NPI {order.provider.npi})"
    rows = [
        ("Order ID", order.order_id),
        ("Portal", order.portal),
        ("Ordering provider", provider),
        ("Patient", patient.full_name),
        ("Date of birth", patient.dob.strftime("%m/%d/%Y") if patient.dob else "-"),
        ("Medicaid/member ID", patient.external_id or "-"),
        ("Phone", patient.phone or "-"),
        ("Address", patient.address.one_line() if patient.address else "-"),
    ]
    if order.eligibility is not None:
        coverage = "eligible" if order.eligibility.is_eligible else "not eligible"
        rows.append(("Coverage", f"{coverage} ({order.eligibility.plan_category.value})"))
    rows.extend(
        [
            ("Tests", "; ".join(f"{t.code} {t.name}".strip() for t in order.tests) or "-"),
            ("Diagnosis codes", order.diagnosis_list or "-"),
            ("Special instructions", order.special_instructions or "-"),
            ("Retries used", f"{order.retry_count}/{order.max_retries}"),
        ]
    )
    return rows


def build_failure_report(order: PortalOrder, error: Exception, artifact_ref: Optional[str]) -> FailureReport:
    """Render the failure report for an order.

    Args:
        order: Order in its final state
        error: Error that ended the automation
        artifact_ref: Screenshot reference, if one was captured

    Returns:
        FailureReport with subject, text and HTML bodies
    """
    info = create_error_info(error, order.order_id)
    subject = f"Lab order {order.order_id} needs manual entry ({order.portal}): {info.error_type}"
    rows = _field_rows(order)
    recent = order.history[-10:]

    text_lines = [
        f"Automated submission of order {order.order_id} to {order.portal} failed.",
        "",
        f"Error: {info.error_type}: {info.message}",
        f"Category: {info.category.value}",
        f"What to do: {info.remediation}",
        "",
        "Order details:",
    ]
    width = max(len(label) for label, _ in rows)
    text_lines.extend(f"  {label.ljust(width)}  {value}" for label, value in rows)
    text_lines.append("")
    text_lines.append(f"Screenshot: {artifact_ref or 'none captured'}")
    if recent:
        text_lines.append("")
        text_lines.append("Recent activity:")
        text_lines.extend(
            f"  {entry.timestamp:%H:%M:%S} [{entry.state.value}] {entry.message}" for entry in recent
        )
    text = "\n".join(text_lines) + "\n"

    table = "\n".join(
        f"<tr><th align=\"left\">{html.escape(label)}</th><td>{html.escape(value)}</td></tr>"
        for label, value in rows
    )
    activity = "\n".join(
        f"<li>{entry.timestamp:%H:%M:%S} [{html.escape(entry.state.value)}] {html.escape(entry.message)}</li>"
        for entry in recent
    )
    html_body = (
        "<html><body>"
        f"<h2>Lab order {html.escape(order.order_id)} needs manual entry</h2>"
        f"<p><strong>{html.escape(info.error_type)}</strong>: {html.escape(info.message)}</p>"
        f"<p>{html.escape(info.remediation)}</p>"
        f"<table border=\"1\" cellpadding=\"4\" cellspacing=\"0\">\n{table}\n</table>"
        f"<p>Screenshot: {html.escape(artifact_ref or 'none captured')}</p>"
        + (f"<h3>Recent activity</h3><ul>\n{activity}\n</ul>" if recent else "")
        + "</body></html>"
    )

    return FailureReport(subject=subject, text=text, html=html_body)
