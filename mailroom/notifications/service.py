"""Notification service - records customer notifications and their effect on mail items."""

from __future__ import annotations

from typing import Any

from mailroom.infrastructure.database import db_transaction, retry_on_db_lock
from mailroom.mail.models import MailItem, MailItemStatus
from mailroom.mail.repository import ActionHistoryRepository, MailItemRepository
from mailroom.notifications.repository import NotificationRepository
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event
from mailroom.storage import utcnow_iso
from mailroom.utils.validators import ValidationError

logger = get_logger(__name__)


class NotificationService:
    @staticmethod
    @retry_on_db_lock()
    def quick_notify(
        mail_item_id: str,
        contact_id: str,
        notified_by: str,
        notification_method: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Record that a customer was told about an item, outside any email send.

        Returns:
            {"notification": ..., "mailItem": ...}, or None if the item does not exist

        Raises:
            ValidationError: A required field is missing

        Side Effects:
            - Inserts a notification_history row
            - Sets the item to Notified with last_notified = now
            - Appends an action_history row attributed to notified_by
        """
        if not mail_item_id or not contact_id or not notified_by:
            raise ValidationError("mail_item_id, contact_id, and notified_by are required")

        now = utcnow_iso()
        channel = notification_method or "Email"

        with db_transaction() as conn:
            row = conn.execute(
                "SELECT status FROM mail_items WHERE mail_item_id = ?", (mail_item_id,)
            ).fetchone()
            if row is None:
                return None

            notification = NotificationRepository.record(
                conn,
                contact_id=contact_id,
                mail_item_id=mail_item_id,
                notified_by=notified_by,
                channel=channel,
                sent_at=now,
            )
            MailItemRepository.mark_notified(conn, [mail_item_id], now)
            ActionHistoryRepository.append(
                [
                    ActionHistoryRepository.build_entry(
                        mail_item_id,
                        "notified",
                        notified_by,
                        action_description=f"Customer notified via {channel}",
                        previous_value=row["status"],
                        new_value=MailItemStatus.NOTIFIED.value,
                        action_timestamp=now,
                    )
                ],
                conn=conn,
            )

        counter("notifications.quick_notify.count")
        log_event("notifications.quick_notify", mail_item_id=mail_item_id, channel=channel)

        item: MailItem | None = MailItemRepository.get_by_id(mail_item_id)
        return {"notification": notification, "mailItem": item.to_dict() if item else None}
