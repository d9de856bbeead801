"""Order preconditions checked before the state machine starts."""

import logging
import re

from lab_order_automation.models.order import PortalOrder
from lab_order_automation.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

# Letter, two alphanumerics, optional dot and up to four more (e.g. "Z00.00", "E119")
ICD10_PATTERN = re.compile(r"^[A-Z][0-9][0-9A-Z](\.?[0-9A-Z]{1,4})?$", re.IGNORECASE)


def validate_order(order: PortalOrder) -> None:
    """Check that an order can be submitted.

    Args:
        order: Order built from an intake request

    Raises:
        ValidationError: Listing every problem found
    """
    errors = []

    if not order.tests:
        errors.append("at least one lab test is required")
    for index, test in enumerate(order.tests):
        if not (test.code or "").strip() and not (test.name or "").strip():
            errors.append(f"test {index + 1} needs a code or a name")

    if not order.diagnosis_codes:
        errors.append("at least one diagnosis code is required")
    for code in order.diagnosis_codes:
        if not ICD10_PATTERN.match(code.strip()):
            errors.append(f"diagnosis code '{code}' is not a valid ICD-10 code")

    patient = order.patient
    if not (patient.first_name or "").strip():
        errors.append("patient first name is required")
    if not (patient.last_name or "").strip():
        errors.append("patient last name is required")
    if patient.dob is None:
        errors.append("patient date of birth is required")

    if not (order.provider.name or "").strip():
        errors.append("ordering provider is required")

    if errors:
        logger.warning("Order %s failed validation: %s", order.order_id, "; ".join(errors))
        raise ValidationError(f"Invalid order {order.order_id}: " + "; ".join(errors))
