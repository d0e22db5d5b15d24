"""
Contact Repository - CRUD operations for the contacts table.

Deletion is soft: the contact's status becomes "No" so historical mail items
keep a valid owner.
"""

from __future__ import annotations

import uuid
from typing import Any

from mailroom.contacts.models import Contact, ContactStatus
from mailroom.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from mailroom.observability.logging import get_logger
from mailroom.storage import utcnow_iso

logger = get_logger(__name__)

# Columns a caller may set through create/update
WRITABLE_FIELDS = (
    "contact_person",
    "company_name",
    "mailbox_number",
    "unit_number",
    "email",
    "phone_number",
    "language_preference",
    "service_tier",
    "display_name_preference",
    "status",
    "notes",
)


class ContactRepository:
    """Static CRUD helpers over the contacts table."""

    @staticmethod
    @retry_on_db_lock()
    def create(data: dict[str, Any]) -> Contact:
        """
        Insert a contact.

        Args:
            data: Field values (only WRITABLE_FIELDS are used; status defaults to PENDING)

        Side Effects:
            - Inserts a row into contacts
        """
        now = utcnow_iso()
        values = {key: data.get(key) for key in WRITABLE_FIELDS}
        values["status"] = values["status"] or ContactStatus.PENDING.value
        values["display_name_preference"] = values["display_name_preference"] or "auto"

        contact = Contact(contact_id=str(uuid.uuid4()), created_at=now, updated_at=now, **values)

        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO contacts (
                    contact_id, contact_person, company_name, mailbox_number, unit_number,
                    email, phone_number, language_preference, service_tier,
                    display_name_preference, status, notes, created_at, updated_at
                ) VALUES (
                    :contact_id, :contact_person, :company_name, :mailbox_number, :unit_number,
                    :email, :phone_number, :language_preference, :service_tier,
                    :display_name_preference, :status, :notes, :created_at, :updated_at
                )
                """,
                contact.to_dict(),
            )

        logger.info("Created contact %s", contact.contact_id)
        return contact

    @staticmethod
    def get_by_id(contact_id: str) -> Contact | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE contact_id = ?", (contact_id,)).fetchone()
        return Contact.from_dict(dict(row)) if row else None

    @staticmethod
    def list_contacts(
        search: str | None = None,
        status: str | None = None,
        language: str | None = None,
        service_tier: int | None = None,
        include_archived: bool = False,
    ) -> list[Contact]:
        """
        List contacts, newest first.

        Args:
            search: Case-insensitive substring over company, person and unit number
            status: Exact status filter (an explicit "No" returns archived contacts)
            language: language_preference filter
            service_tier: service_tier filter
            include_archived: Include soft-deleted contacts when no status filter is set
        """
        clauses: list[str] = []
        params: list[Any] = []

        if search:
            pattern = f"%{search.strip().lower()}%"
            clauses.append(
                "(LOWER(COALESCE(company_name, '')) LIKE ? "
                "OR LOWER(COALESCE(contact_person, '')) LIKE ? "
                "OR LOWER(COALESCE(unit_number, '')) LIKE ?)"
            )
            params.extend([pattern, pattern, pattern])
        if status:
            clauses.append("status = ?")
            params.append(status)
        elif not include_archived:
            clauses.append("status != ?")
            params.append(ContactStatus.ARCHIVED.value)
        if language:
            clauses.append("language_preference = ?")
            params.append(language)
        if service_tier is not None:
            clauses.append("service_tier = ?")
            params.append(service_tier)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with get_db_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM contacts {where} ORDER BY created_at DESC", tuple(params)
            ).fetchall()

        return [Contact.from_dict(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def update(contact_id: str, updates: dict[str, Any]) -> Contact | None:
        """
        Update whitelisted fields.

        Returns:
            Updated Contact, or None if it does not exist
        """
        set_values = {key: value for key, value in updates.items() if key in WRITABLE_FIELDS}
        if not set_values:
            return ContactRepository.get_by_id(contact_id)

        set_values["updated_at"] = utcnow_iso()
        set_clause = ", ".join(f"{key} = :{key}" for key in set_values)

        with db_transaction() as conn:
            cursor = conn.execute(
                f"UPDATE contacts SET {set_clause} WHERE contact_id = :contact_id",
                {**set_values, "contact_id": contact_id},
            )
            if cursor.rowcount == 0:
                return None

        logger.info("Updated contact %s: %s", contact_id, sorted(set_values))
        return ContactRepository.get_by_id(contact_id)

    @staticmethod
    def archive(contact_id: str) -> bool:
        """Soft delete. Returns False if the contact does not exist."""
        updated = ContactRepository.update(contact_id, {"status": ContactStatus.ARCHIVED.value})
        return updated is not None
