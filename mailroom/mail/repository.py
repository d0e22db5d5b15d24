"""
Mail item and action history repositories.

Status-changing updates append an action_history row in the same
transaction when the caller says who performed them.
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from mailroom.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from mailroom.mail.models import ActionHistoryEntry, ItemType, MailItem, MailItemStatus
from mailroom.observability.logging import get_logger
from mailroom.storage import utcnow_iso
from mailroom.utils.timezone import is_date_only
from mailroom.utils.validators import ValidationError

logger = get_logger(__name__)

UPDATABLE_FIELDS = ("item_type", "quantity", "status", "description", "received_date")


def validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def validate_status(status: str) -> str:
    if status not in MailItemStatus.values():
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(MailItemStatus.values())}")
    return status


def validate_item_type(item_type: str) -> str:
    if item_type not in (ItemType.LETTER.value, ItemType.PACKAGE.value):
        raise ValidationError("item_type must be Letter or Package")
    return item_type


class ActionHistoryRepository:
    """Append-only access to action_history (the table rejects UPDATE/DELETE)."""

    @staticmethod
    def _insert(conn: sqlite3.Connection, entry: ActionHistoryEntry) -> None:
        conn.execute(
            """
            INSERT INTO action_history (
                action_id, mail_item_id, action_type, action_description,
                previous_value, new_value, notes, performed_by, action_timestamp
            ) VALUES (
                :action_id, :mail_item_id, :action_type, :action_description,
                :previous_value, :new_value, :notes, :performed_by, :action_timestamp
            )
            """,
            entry.to_dict(),
        )

    @staticmethod
    def build_entry(
        mail_item_id: str,
        action_type: str,
        performed_by: str,
        action_description: str | None = None,
        previous_value: str | None = None,
        new_value: str | None = None,
        notes: str | None = None,
        action_timestamp: str | None = None,
    ) -> ActionHistoryEntry:
        return ActionHistoryEntry(
            action_id=str(uuid.uuid4()),
            mail_item_id=mail_item_id,
            action_type=action_type,
            performed_by=performed_by,
            action_timestamp=action_timestamp or utcnow_iso(),
            action_description=action_description,
            previous_value=previous_value,
            new_value=new_value,
            notes=notes,
        )

    @staticmethod
    @retry_on_db_lock()
    def append(entries: list[ActionHistoryEntry], conn: sqlite3.Connection | None = None) -> None:
        """
        Append entries, inside the caller's transaction when conn is given.

        Side Effects:
            - Inserts rows into action_history
        """
        if conn is not None:
            for entry in entries:
                ActionHistoryRepository._insert(conn, entry)
            return

        with db_transaction() as own_conn:
            for entry in entries:
                ActionHistoryRepository._insert(own_conn, entry)

    @staticmethod
    def list_for_item(mail_item_id: str) -> list[ActionHistoryEntry]:
        """History of one mail item, newest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM action_history
                WHERE mail_item_id = ?
                ORDER BY action_timestamp DESC
                """,
                (mail_item_id,),
            ).fetchall()
        return [ActionHistoryEntry.from_db_row(dict(row)) for row in rows]


class MailItemRepository:
    """
    Repository for MailItem CRUD operations.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    @retry_on_db_lock()
    def create(
        contact_id: str,
        item_type: str | None = None,
        quantity: int = 1,
        status: str | None = None,
        description: str | None = None,
        received_date: str | None = None,
        performed_by: str | None = None,
    ) -> MailItem:
        """
        Log a received mail item.

        A date-only received_date (YYYY-MM-DD) carries no time of day, so the
        current timestamp is used instead.

        Raises:
            ValidationError: Bad quantity/status/type or unknown contact
        """
        item_type = validate_item_type(item_type or ItemType.PACKAGE.value)
        status = validate_status(status or MailItemStatus.RECEIVED.value)
        quantity = validate_quantity(quantity)

        now = utcnow_iso()
        if not received_date or is_date_only(received_date):
            received_date = now

        item = MailItem(
            mail_item_id=str(uuid.uuid4()),
            contact_id=contact_id,
            item_type=item_type,
            quantity=quantity,
            status=status,
            description=description,
            received_date=received_date,
            created_at=now,
            updated_at=now,
        )

        with db_transaction() as conn:
            if conn.execute("SELECT 1 FROM contacts WHERE contact_id = ?", (contact_id,)).fetchone() is None:
                raise ValidationError("Contact not found")

            MailItemRepository._insert(conn, item)

            if performed_by:
                ActionHistoryRepository.append(
                    [
                        ActionHistoryRepository.build_entry(
                            item.mail_item_id,
                            "created",
                            performed_by,
                            action_description=f"Logged {quantity} {item_type}",
                            new_value=status,
                        )
                    ],
                    conn=conn,
                )

        logger.info("Created mail item %s for contact %s", item.mail_item_id, contact_id)
        return item

    @staticmethod
    def _insert(conn: sqlite3.Connection, item: MailItem) -> None:
        conn.execute(
            """
            INSERT INTO mail_items (
                mail_item_id, contact_id, item_type, quantity, status, description,
                received_date, pickup_date, last_notified, created_at, updated_at
            ) VALUES (
                :mail_item_id, :contact_id, :item_type, :quantity, :status, :description,
                :received_date, :pickup_date, :last_notified, :created_at, :updated_at
            )
            """,
            item.to_dict(),
        )

    @staticmethod
    def insert_many(conn: sqlite3.Connection, items: list[MailItem]) -> None:
        """Insert pre-built items inside the caller's transaction."""
        for item in items:
            MailItemRepository._insert(conn, item)

    @staticmethod
    def get_by_id(mail_item_id: str) -> MailItem | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM mail_items WHERE mail_item_id = ?", (mail_item_id,)
            ).fetchone()
        return MailItem.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_items(contact_id: str | None = None, limit: int = 500) -> list[dict[str, Any]]:
        """
        Mail log rows, newest first, joined with the owning contact and the
        number of notifications sent for each item.
        """
        query = """
            SELECT
                m.*,
                c.contact_person,
                c.company_name,
                c.mailbox_number,
                c.display_name_preference,
                (SELECT COUNT(*) FROM notification_history n
                 WHERE n.mail_item_id = m.mail_item_id) AS notification_count
            FROM mail_items m
            JOIN contacts c ON c.contact_id = m.contact_id
        """
        params: list[Any] = []
        if contact_id:
            query += " WHERE m.contact_id = ?"
            params.append(contact_id)
        query += " ORDER BY m.received_date DESC LIMIT ?"
        params.append(limit)

        with get_db_connection() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def update(
        mail_item_id: str,
        updates: dict[str, Any],
        performed_by: str | None = None,
        notes: str | None = None,
    ) -> MailItem | None:
        """
        Update a mail item.

        Status rules: "Picked Up" stamps pickup_date, any other status clears
        it; "Received" also clears last_notified.

        Returns:
            Updated MailItem, or None if it does not exist

        Raises:
            ValidationError: No updatable fields, or an invalid value
        """
        set_values = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS and value is not None}
        if not set_values:
            raise ValidationError("No fields to update")

        if "quantity" in set_values:
            validate_quantity(set_values["quantity"])
        if "item_type" in set_values:
            validate_item_type(set_values["item_type"])

        now = utcnow_iso()
        new_status = set_values.get("status")
        if new_status is not None:
            validate_status(new_status)
            set_values["pickup_date"] = now if new_status == MailItemStatus.PICKED_UP.value else None
            if new_status == MailItemStatus.RECEIVED.value:
                set_values["last_notified"] = None

        set_values["updated_at"] = now
        set_clause = ", ".join(f"{key} = :{key}" for key in set_values)

        with db_transaction() as conn:
            row = conn.execute(
                "SELECT status FROM mail_items WHERE mail_item_id = ?", (mail_item_id,)
            ).fetchone()
            if row is None:
                return None

            conn.execute(
                f"UPDATE mail_items SET {set_clause} WHERE mail_item_id = :mail_item_id",
                {**set_values, "mail_item_id": mail_item_id},
            )

            if performed_by and new_status is not None and new_status != row["status"]:
                ActionHistoryRepository.append(
                    [
                        ActionHistoryRepository.build_entry(
                            mail_item_id,
                            "status_change",
                            performed_by,
                            action_description=f"Status changed from {row['status']} to {new_status}",
                            previous_value=row["status"],
                            new_value=new_status,
                            notes=notes,
                            action_timestamp=now,
                        )
                    ],
                    conn=conn,
                )

        logger.info("Updated mail item %s: %s", mail_item_id, sorted(set_values))
        return MailItemRepository.get_by_id(mail_item_id)

    @staticmethod
    def mark_notified(conn: sqlite3.Connection, mail_item_ids: list[str], notified_at: str) -> None:
        """Set status Notified and last_notified inside the caller's transaction."""
        if not mail_item_ids:
            return
        placeholders = ",".join("?" * len(mail_item_ids))
        conn.execute(
            f"""
            UPDATE mail_items
            SET status = ?, last_notified = ?, updated_at = ?
            WHERE mail_item_id IN ({placeholders})
            """,
            (MailItemStatus.NOTIFIED.value, notified_at, notified_at, *mail_item_ids),
        )

    @staticmethod
    @retry_on_db_lock()
    def delete(mail_item_id: str) -> bool:
        """Delete a mail item (its notifications cascade; history is kept)."""
        with db_transaction() as conn:
            cursor = conn.execute("DELETE FROM mail_items WHERE mail_item_id = ?", (mail_item_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted mail item %s", mail_item_id)
        return deleted
