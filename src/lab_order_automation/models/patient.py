"""Patient demographics data model.

PatientDemographics is immutable: enrichment from the payer produces a new
instance via ``merged_with`` rather than updating fields in place.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Address:
    """Free-text postal address as held by the caller or the payer.

    Attributes:
        street: Street line(s), joined with a space
        city: City
        state: State/province code
        postal_code: ZIP or postal code
    """

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.street, self.city, self.state, self.postal_code))

    def merged_with(self, verified: Optional["Address"]) -> "Address":
        """Overlay the non-null fields of ``verified`` on this address."""
        if verified is None:
            return self
        return Address(
            street=verified.street or self.street,
            city=verified.city or self.city,
            state=verified.state or self.state,
            postal_code=verified.postal_code or self.postal_code,
        )

    def one_line(self) -> str:
        parts = [self.street, self.city, " ".join(p for p in (self.state, self.postal_code) if p)]
        return ", ".join(p for p in parts if p)


@dataclass(frozen=True)
class PatientDemographics:
    """Patient identity and contact information.

    Attributes:
        first_name: Patient's first name
        last_name: Patient's last name
        dob: Date of birth
        external_id: Government health-plan ID (e.g. Medicaid ID), optional
        address: Postal address, optional
        phone: Contact phone number, optional
    """

    first_name: Optional[str]
    last_name: Optional[str]
    dob: Optional[date]
    external_id: Optional[str] = None
    address: Optional[Address] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def has_complete_identity(self) -> bool:
        """True when first name, last name and date of birth are all present."""
        return bool(self.first_name and self.first_name.strip()) and bool(
            self.last_name and self.last_name.strip()
        ) and self.dob is not None

    def merged_with(self, verified: Optional["PatientDemographics"]) -> "PatientDemographics":
        """Return a copy with every non-null verified field replacing ours.

        Fields the verified record leaves null keep the caller-supplied value.
        Address sub-fields are merged the same way.
        """
        if verified is None:
            return self

        if verified.address is None or verified.address.is_empty():
            address = self.address
        else:
            address = (self.address or Address()).merged_with(verified.address)

        return replace(
            self,
            first_name=verified.first_name or self.first_name,
            last_name=verified.last_name or self.last_name,
            dob=verified.dob or self.dob,
            external_id=verified.external_id or self.external_id,
            address=address,
            phone=verified.phone or self.phone,
        )

    def with_phone(self, phone: Optional[str]) -> "PatientDemographics":
        return replace(self, phone=phone)

    def to_dict(self) -> dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "dateOfBirth": self.dob.isoformat() if self.dob else None,
            "externalId": self.external_id,
            "address": None
            if self.address is None
            else {
                "street": self.address.street,
                "city": self.address.city,
                "state": self.address.state,
                "postalCode": self.address.postal_code,
            },
            "phone": self.phone,
        }
