"""Contact (tenant/customer) domain model."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any


class ContactStatus(str, Enum):
    """Contact lifecycle. Archived contacts are stored as "No" (soft delete)."""

    ACTIVE = "Active"
    PENDING = "PENDING"
    ARCHIVED = "No"


@dataclass
class Contact:
    """A mailroom customer: a person, a company, or both, with a mailbox."""

    contact_id: str
    contact_person: str | None = None
    company_name: str | None = None
    mailbox_number: str | None = None
    unit_number: str | None = None
    email: str | None = None
    phone_number: str | None = None
    language_preference: str | None = None
    service_tier: int | None = None
    display_name_preference: str = "auto"
    status: str = ContactStatus.PENDING.value
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contact:
        """Build from a DB row or API payload; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def is_archived(self) -> bool:
        return self.status == ContactStatus.ARCHIVED.value

    @property
    def display_name(self) -> str:
        """Name shown in the mail log and in notification emails."""
        person = self.contact_person or ""
        company = self.company_name or ""
        preference = self.display_name_preference

        if preference == "company" and company:
            return company
        if preference == "person" and person:
            return person
        if preference == "both" and person and company:
            return f"{person} ({company})"
        return person or company or "Unknown"
