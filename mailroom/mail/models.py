"""
Module: models
Purpose: Mail item and action history domain types.

MailItem rows are mutable (status changes); ActionHistoryEntry rows are an
append-only audit trail of those changes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any


class ItemType(str, Enum):
    LETTER = "Letter"
    PACKAGE = "Package"


class MailItemStatus(str, Enum):
    """Statuses accepted on create/update.

    Extends str so JSON payloads carry the raw label (e.g. "Picked Up").
    """

    RECEIVED = "Received"
    NOTIFIED = "Notified"
    PICKED_UP = "Picked Up"
    PENDING = "Pending"
    SCANNED = "Scanned"
    SCANNED_DOCUMENT = "Scanned Document"
    FORWARD = "Forward"
    ABANDONED = "Abandoned"
    ABANDONED_PACKAGE = "Abandoned Package"

    @classmethod
    def values(cls) -> list[str]:
        return [status.value for status in cls]


@dataclass
class MailItem:
    """A received letter or package, owned by exactly one contact."""

    mail_item_id: str
    contact_id: str
    item_type: str = ItemType.PACKAGE.value
    quantity: int = 1
    status: str = MailItemStatus.RECEIVED.value
    description: str | None = None
    received_date: str | None = None
    pickup_date: str | None = None
    last_notified: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> MailItem:
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in row.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActionHistoryEntry:
    """One immutable audit record about a mail item."""

    action_id: str
    mail_item_id: str
    action_type: str
    performed_by: str
    action_timestamp: str
    action_description: str | None = None
    previous_value: str | None = None
    new_value: str | None = None
    notes: str | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ActionHistoryEntry:
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in row.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
