"""Notification history and message template storage."""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from mailroom.observability.logging import get_logger
from mailroom.storage import BaseRepository, utcnow_iso

logger = get_logger(__name__)


class MessageTemplateRepository(BaseRepository):
    def __init__(self) -> None:
        super().__init__("message_templates")

    def get_by_name(self, template_name: str) -> dict[str, Any] | None:
        row = self.query_one(
            "SELECT * FROM message_templates WHERE template_name = ?", (template_name,)
        )
        return dict(row) if row else None

    def list_templates(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self.query_all("SELECT * FROM message_templates ORDER BY template_name")]


class NotificationRepository(BaseRepository):
    """
    Rows in notification_history, one per customer message sent.

    ``record`` accepts the caller's connection so the history row lands in
    the same transaction as the mail item status change.
    """

    def __init__(self) -> None:
        super().__init__("notification_history")

    @staticmethod
    def record(
        conn: sqlite3.Connection,
        contact_id: str,
        mail_item_id: str | None,
        notified_by: str | None = None,
        channel: str = "Email",
        template_id: str | None = None,
        message_type: str = "Initial",
        message_content: str | None = None,
        sent_at: str | None = None,
    ) -> dict[str, Any]:
        row = {
            "notification_id": str(uuid.uuid4()),
            "contact_id": contact_id,
            "mail_item_id": mail_item_id,
            "template_id": template_id,
            "message_type": message_type,
            "channel": channel,
            "message_content": message_content,
            "notified_by": notified_by,
            "sent_at": sent_at or utcnow_iso(),
        }
        conn.execute(
            """
            INSERT INTO notification_history (
                notification_id, contact_id, mail_item_id, template_id, message_type,
                channel, message_content, notified_by, sent_at
            ) VALUES (
                :notification_id, :contact_id, :mail_item_id, :template_id, :message_type,
                :channel, :message_content, :notified_by, :sent_at
            )
            """,
            row,
        )
        return row

    def list_for_mail_item(self, mail_item_id: str) -> list[dict[str, Any]]:
        rows = self.query_all(
            "SELECT * FROM notification_history WHERE mail_item_id = ? ORDER BY sent_at DESC",
            (mail_item_id,),
        )
        return [dict(row) for row in rows]

    def list_for_contact(self, contact_id: str) -> list[dict[str, Any]]:
        """Contact history, with the item type and received date of each notified item."""
        rows = self.query_all(
            """
            SELECT n.*, m.item_type, m.received_date
            FROM notification_history n
            LEFT JOIN mail_items m ON m.mail_item_id = n.mail_item_id
            WHERE n.contact_id = ?
            ORDER BY n.sent_at DESC
            """,
            (contact_id,),
        )
        return [dict(row) for row in rows]
