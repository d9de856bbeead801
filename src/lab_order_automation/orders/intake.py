"""Parsing of order and eligibility requests.

Requests arrive as camelCase JSON from the order-entry UI. Structural problems
(wrong types, unparseable dates) are rejected here; business preconditions
such as "at least one diagnosis code" are checked by ``validate_order`` so the
caller receives every problem at once.
"""

import uuid
from datetime import date
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from lab_order_automation.models.order import LabTest, PortalOrder, ProviderReference
from lab_order_automation.models.patient import Address, PatientDemographics
from lab_order_automation.utils.exceptions import ValidationError


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class AddressPayload(_CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")

    def to_address(self) -> Optional[Address]:
        address = Address(self.street or None, self.city or None, self.state or None, self.postal_code or None)
        return None if address.is_empty() else address


class PatientPayload(_CamelModel):
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    medicaid_id: Optional[str] = Field(default=None, alias="medicaidId")
    address: Optional[AddressPayload] = None
    phone: Optional[str] = None

    def to_demographics(self) -> PatientDemographics:
        return PatientDemographics(
            first_name=self.first_name or None,
            last_name=self.last_name or None,
            dob=self.date_of_birth,
            external_id=self.medicaid_id or None,
            address=self.address.to_address() if self.address else None,
            phone=self.phone or None,
        )


class TestPayload(_CamelModel):
    __test__ = False  # not a pytest class

    code: str = ""
    name: str = ""


class ProviderPayload(_CamelModel):
    name: str = ""
    npi: Optional[str] = None


class OrderRequest(_CamelModel):
    """An order submission request.

    Example:
        >>> request = OrderRequest.model_validate({
        ...     "portal": "labcorp",
        ...     "provider": {"name": "Dr. Sweeney"},
        ...     "patient": {"firstName": "Jeremy", "lastName": "Montoya", "dateOfBirth": "1984-07-17"},
        ...     "tests": [{"code": "322000", "name": "Comprehensive Metabolic Panel"}],
        ...     "diagnosisCodes": ["F11.20"],
        ... })
    """

    order_id: Optional[str] = Field(default=None, alias="orderId")
    portal: Optional[str] = None
    provider: ProviderPayload = Field(default_factory=ProviderPayload)
    patient: PatientPayload
    tests: list[TestPayload] = Field(default_factory=list)
    diagnosis_codes: list[str] = Field(default_factory=list, alias="diagnosisCodes")
    special_instructions: Optional[str] = Field(default=None, alias="specialInstructions")
    fallback_phone: Optional[str] = Field(default=None, alias="fallbackPhone")

    def to_order(self, default_portal: str, max_retries: int) -> PortalOrder:
        return PortalOrder(
            order_id=self.order_id or f"ORD-{uuid.uuid4().hex[:12].upper()}",
            portal=(self.portal or default_portal).lower(),
            provider=ProviderReference(self.provider.name, self.provider.npi),
            patient=self.patient.to_demographics(),
            tests=[LabTest(t.code, t.name) for t in self.tests],
            diagnosis_codes=[c for c in self.diagnosis_codes if c],
            special_instructions=self.special_instructions or None,
            fallback_phone=self.fallback_phone or None,
            max_retries=max_retries,
        )


class EligibilityRequest(_CamelModel):
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")
    medicaid_id: Optional[str] = Field(default=None, alias="medicaidId")
    fallback_phone: Optional[str] = Field(default=None, alias="fallbackPhone")

    def to_demographics(self) -> PatientDemographics:
        return PatientDemographics(
            first_name=self.first_name or None,
            last_name=self.last_name or None,
            dob=self.date_of_birth,
            external_id=self.medicaid_id or None,
        )


def _format_errors(e: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
    )


def parse_order_request(data: Mapping[str, Any]) -> OrderRequest:
    """Parse a JSON order request.

    Raises:
        ValidationError: If the payload is structurally invalid
    """
    try:
        return OrderRequest.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid order request: {_format_errors(e)}") from e


def parse_eligibility_request(data: Mapping[str, Any]) -> EligibilityRequest:
    try:
        return EligibilityRequest.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid eligibility request: {_format_errors(e)}") from e
