"""Mail - received items, their audit trail, and mail-log shaping"""

from mailroom.mail.models import ActionHistoryEntry, ItemType, MailItem, MailItemStatus
from mailroom.mail.repository import ActionHistoryRepository, MailItemRepository

__all__ = [
    "ActionHistoryEntry",
    "ActionHistoryRepository",
    "ItemType",
    "MailItem",
    "MailItemRepository",
    "MailItemStatus",
]
