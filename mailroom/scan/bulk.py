"""
Server side of the scan session submit.

Items are grouped per contact; each group is logged and (optionally) emailed
on its own, so one bad contact or a failed email never blocks the others.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from mailroom.contacts.models import Contact
from mailroom.contacts.repository import ContactRepository
from mailroom.gmail.sender import EmailSendError, GmailSender
from mailroom.infrastructure.database import db_transaction, retry_on_db_lock
from mailroom.mail.models import ItemType, MailItem, MailItemStatus
from mailroom.mail.repository import ActionHistoryRepository, MailItemRepository, validate_item_type
from mailroom.notifications.repository import MessageTemplateRepository, NotificationRepository
from mailroom.notifications.templates import (
    FALLBACK_TEMPLATE,
    item_type_summary,
    pluralize,
    render_template,
    scan_template_name,
)
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event
from mailroom.storage import utcnow_iso
from mailroom.utils.timezone import format_display_date
from mailroom.utils.validators import ValidationError

logger = get_logger(__name__)


@dataclass
class ContactGroup:
    contact_id: str
    items: list[dict[str, Any]] = field(default_factory=list)
    letter_count: int = 0
    package_count: int = 0

    def add(self, item: dict[str, Any]) -> None:
        self.items.append(item)
        if item["item_type"] == ItemType.LETTER.value:
            self.letter_count += 1
        else:
            self.package_count += 1


def group_by_contact(items: list[dict[str, Any]]) -> list[ContactGroup]:
    """Group submitted items per contact, keeping first-seen order."""
    groups: dict[str, ContactGroup] = {}
    for item in items:
        contact_id = item.get("contact_id")
        if not contact_id:
            raise ValidationError("Every item needs a contact_id")
        validate_item_type(item.get("item_type") or "")
        if contact_id not in groups:
            groups[contact_id] = ContactGroup(contact_id)
        groups[contact_id].add(item)
    return list(groups.values())


def _customer_name(contact: Contact) -> str:
    return contact.contact_person or contact.company_name or "Valued Customer"


def template_variables(contact: Contact, group: ContactGroup, fallback: bool) -> dict[str, Any]:
    variables: dict[str, Any] = {
        "Name": _customer_name(contact),
        "BoxNumber": contact.mailbox_number or "N/A",
        "Date": format_display_date(),
    }
    if fallback:
        variables["Type"] = item_type_summary(group.letter_count, group.package_count)
    else:
        variables.update(
            LetterCount=group.letter_count,
            PackageCount=group.package_count,
            TotalCount=group.letter_count + group.package_count,
            LetterText=pluralize(group.letter_count, "letter"),
            PackageText=pluralize(group.package_count, "package"),
        )
    return variables


class ScanBulkSubmitter:
    """
    Logs a finished scan session and emails each customer once.

    Args:
        sender: Gmail sender used for the notification emails
        templates: Template lookup (defaults to the message_templates table)
    """

    def __init__(
        self,
        sender: GmailSender | None = None,
        templates: MessageTemplateRepository | None = None,
    ):
        self._sender = sender
        self.templates = templates if templates is not None else MessageTemplateRepository()

    @property
    def sender(self) -> GmailSender:
        if self._sender is None:
            self._sender = GmailSender()
        return self._sender

    @staticmethod
    @retry_on_db_lock()
    def _create_items(group: ContactGroup, performed_by: str) -> list[MailItem]:
        now = utcnow_iso()
        created = [
            MailItem(
                mail_item_id=str(uuid.uuid4()),
                contact_id=group.contact_id,
                item_type=item["item_type"],
                quantity=1,
                status=MailItemStatus.RECEIVED.value,
                received_date=item.get("scanned_at") or now,
                created_at=now,
                updated_at=now,
            )
            for item in group.items
        ]
        with db_transaction() as conn:
            MailItemRepository.insert_many(conn, created)
            ActionHistoryRepository.append(
                [
                    ActionHistoryRepository.build_entry(
                        item.mail_item_id,
                        "created",
                        performed_by,
                        action_description=f"Logged {item.item_type} from scan session",
                        new_value=item.status,
                        action_timestamp=now,
                    )
                    for item in created
                ],
                conn=conn,
            )
        return created

    def _pick_template(self, group: ContactGroup) -> tuple[dict[str, Any] | None, bool]:
        """Returns (template, is_fallback)."""
        template = self.templates.get_by_name(scan_template_name(group.letter_count, group.package_count))
        if template is not None:
            return template, False
        logger.warning("Scan template missing, using %r", FALLBACK_TEMPLATE)
        return self.templates.get_by_name(FALLBACK_TEMPLATE), True

    @staticmethod
    @retry_on_db_lock()
    def _record_notification(
        contact: Contact,
        created: list[MailItem],
        template: dict[str, Any],
        performed_by: str,
    ) -> None:
        now = utcnow_iso()
        with db_transaction() as conn:
            NotificationRepository.record(
                conn,
                contact_id=contact.contact_id,
                mail_item_id=created[0].mail_item_id,
                notified_by=performed_by,
                template_id=template.get("template_id"),
                message_content=template.get("message_body"),
                sent_at=now,
            )
            MailItemRepository.mark_notified(conn, [item.mail_item_id for item in created], now)

    def _notify(
        self,
        user_id: str,
        contact: Contact,
        group: ContactGroup,
        created: list[MailItem],
        performed_by: str,
    ) -> bool:
        """Email the contact about its new items. Never raises: the items are already committed."""
        try:
            template, fallback = self._pick_template(group)
            if template is None:
                logger.warning("No notification template available for contact %s", contact.contact_id)
                return False

            self.sender.send_template_email(
                user_id,
                contact.email,
                template["subject_line"],
                template["message_body"],
                template_variables(contact, group, fallback),
            )
            self._record_notification(contact, created, template, performed_by)
        except EmailSendError as e:
            logger.warning("Failed to email contact %s: %s", contact.contact_id, e)
            counter("scan.bulk_submit.email_error")
            return False
        except Exception as e:
            logger.error("Notification for contact %s failed after items were logged: %s", contact.contact_id, e)
            counter("scan.bulk_submit.email_error")
            return False
        return True

    def _process_group(
        self,
        user_id: str,
        group: ContactGroup,
        performed_by: str,
        skip_notification: bool,
    ) -> dict[str, Any]:
        contact = ContactRepository.get_by_id(group.contact_id)
        if contact is None:
            raise LookupError(f"Contact not found: {group.contact_id}")

        created = self._create_items(group, performed_by)
        sent = False if skip_notification else self._notify(user_id, contact, group, created, performed_by)

        return {
            "contact_id": contact.contact_id,
            "contact_name": contact.contact_person or contact.company_name,
            "letterCount": group.letter_count,
            "packageCount": group.package_count,
            "notificationSent": sent,
            "itemsCreated": len(created),
        }

    def submit(
        self,
        user_id: str,
        items: list[dict[str, Any]],
        performed_by: str,
        skip_notification: bool = False,
    ) -> dict[str, Any]:
        """
        Create the scanned items and notify their owners.

        Returns:
            {success, itemsCreated, notificationsSent, summary, errors?}

        Raises:
            ValidationError: Empty item list, missing performed_by, or a bad item
        """
        if not items:
            raise ValidationError("Items array is required and must not be empty")
        if not performed_by or not performed_by.strip():
            raise ValidationError("performed_by is required")

        summary = []
        for group in group_by_contact(items):
            try:
                summary.append(self._process_group(user_id, group, performed_by.strip(), skip_notification))
            except Exception as e:
                logger.error("Error processing scan group for contact %s: %s", group.contact_id, e)
                counter("scan.bulk_submit.group_error")
                summary.append(
                    {
                        "contact_id": group.contact_id,
                        "contact_name": "Unknown",
                        "letterCount": group.letter_count,
                        "packageCount": group.package_count,
                        "notificationSent": False,
                        "itemsCreated": 0,
                        "error": str(e),
                    }
                )

        items_created = sum(result["itemsCreated"] for result in summary)
        notifications_sent = sum(1 for result in summary if result["notificationSent"])
        errors = [result["error"] for result in summary if "error" in result]

        log_event(
            "scan.bulk_submit",
            user_id=user_id,
            groups=len(summary),
            items_created=items_created,
            notifications_sent=notifications_sent,
            errors=len(errors),
        )

        response: dict[str, Any] = {
            "success": True,
            "itemsCreated": items_created,
            "notificationsSent": notifications_sent,
            "summary": summary,
        }
        if errors:
            response["errors"] = errors
        return response
