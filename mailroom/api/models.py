"""Pydantic request models for the Mailroom API.

Responses are plain dicts built from the domain dataclasses; requests are
validated here so routes only see well-typed input.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from mailroom.config import API_BATCH_SIZE_MAX, SCAN_BATCH_MAX_PHOTOS
from mailroom.mail.models import ItemType, MailItemStatus

MAX_IMAGE_B64_LENGTH = 15_000_000


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# =============================================================================
# CONTACTS
# =============================================================================


class ContactCreate(BaseModel):
    contact_person: str | None = Field(None, max_length=200)
    company_name: str | None = Field(None, max_length=200)
    mailbox_number: str | None = Field(None, max_length=20)
    unit_number: str | None = Field(None, max_length=20)
    email: str | None = Field(None, max_length=200)
    phone_number: str | None = Field(None, max_length=40)
    language_preference: str | None = Field(None, max_length=40)
    service_tier: int | None = Field(None, ge=1, le=10)
    display_name_preference: str | None = None
    status: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=5000)


class ContactUpdate(ContactCreate):
    """Same fields as create; only the ones sent are changed."""


# =============================================================================
# MAIL ITEMS
# =============================================================================


class MailItemCreate(BaseModel):
    contact_id: str = Field(..., min_length=1, max_length=64)
    item_type: str | None = None
    # Left untyped so the repository can reject 1.5, "2" and True with its own message
    quantity: Any = 1
    status: str | None = None
    description: str | None = Field(None, max_length=2000)
    received_date: str | None = Field(None, max_length=40)
    performed_by: str | None = Field(None, max_length=100)

    @field_validator("item_type")
    @classmethod
    def check_item_type(cls, value: str | None) -> str | None:
        if value is not None and value not in (ItemType.LETTER.value, ItemType.PACKAGE.value):
            raise ValueError("item_type must be Letter or Package")
        return value


class MailItemUpdate(BaseModel):
    item_type: str | None = None
    quantity: Any = None
    status: str | None = None
    description: str | None = Field(None, max_length=2000)
    received_date: str | None = Field(None, max_length=40)
    performed_by: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)

    @field_validator("status")
    @classmethod
    def check_status(cls, value: str | None) -> str | None:
        if value is not None and value not in MailItemStatus.values():
            raise ValueError("Invalid status")
        return value


# =============================================================================
# ACTION HISTORY
# =============================================================================


class ActionHistoryCreate(BaseModel):
    mail_item_id: str = Field(..., min_length=1, max_length=64)
    action_type: str = Field(..., min_length=1, max_length=50)
    performed_by: str = Field(..., min_length=1, max_length=100)
    action_description: str | None = Field(None, max_length=1000)
    previous_value: str | None = Field(None, max_length=200)
    new_value: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)
    action_timestamp: str | None = Field(None, max_length=40)


class ActionHistoryBulkCreate(BaseModel):
    actions: list[ActionHistoryCreate] = Field(..., min_length=1, max_length=API_BATCH_SIZE_MAX)


# =============================================================================
# TODOS
# =============================================================================


class TodoCreate(BaseModel):
    title: str = Field(..., max_length=500)
    notes: str | None = Field(None, max_length=5000)
    date_header: str | None = Field(None, max_length=40)
    priority: int | None = Field(None, ge=0, le=10)
    category: str | None = Field(None, max_length=50)
    staff_member: str | None = Field(None, max_length=100)


class TodoUpdate(BaseModel):
    title: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=5000)
    date_header: str | None = Field(None, max_length=40)
    priority: int | None = Field(None, ge=0, le=10)
    category: str | None = Field(None, max_length=50)
    is_completed: bool | None = None
    sort_order: int | None = None
    staff_member: str | None = Field(None, max_length=100)


class TodoOrderChange(BaseModel):
    todo_id: str = Field(..., min_length=1, max_length=64)
    sort_order: int | None = None
    is_completed: bool | None = None


class TodoBulkUpdate(BaseModel):
    todos: list[TodoOrderChange] = Field(default_factory=list, max_length=API_BATCH_SIZE_MAX)


# =============================================================================
# SCAN
# =============================================================================


class MatchContact(BaseModel):
    """The reduced contact shape the scan station sends for matching."""

    contact_id: str = Field(..., max_length=64)
    contact_person: str | None = Field(None, max_length=200)
    company_name: str | None = Field(None, max_length=200)
    mailbox_number: str | None = Field(None, max_length=20)


class SmartMatchRequest(BaseModel):
    image: str = Field(..., min_length=1, max_length=MAX_IMAGE_B64_LENGTH)
    mimeType: str | None = Field(None, max_length=50)
    contacts: list[MatchContact] = Field(..., max_length=5000)


class BatchImage(BaseModel):
    image: str = Field(..., min_length=1, max_length=MAX_IMAGE_B64_LENGTH)
    mimeType: str | None = Field(None, max_length=50)


class SmartMatchBatchRequest(BaseModel):
    images: list[BatchImage] = Field(..., min_length=1, max_length=SCAN_BATCH_MAX_PHOTOS)
    contacts: list[MatchContact] = Field(..., max_length=5000)


class ScannedItemSubmit(BaseModel):
    contact_id: str = Field(..., min_length=1, max_length=64)
    item_type: str = ItemType.LETTER.value
    scanned_at: str | None = Field(None, max_length=40)

    @field_validator("item_type")
    @classmethod
    def check_item_type(cls, value: str) -> str:
        if value not in (ItemType.LETTER.value, ItemType.PACKAGE.value):
            raise ValueError("item_type must be Letter or Package")
        return value


class BulkSubmitRequest(BaseModel):
    items: list[ScannedItemSubmit] = Field(..., max_length=API_BATCH_SIZE_MAX)
    performed_by: str = Field(..., max_length=100)
    skip_notification: bool = False

    @field_validator("performed_by")
    @classmethod
    def check_performed_by(cls, value: str) -> str:
        cleaned = _strip_or_none(value)
        if cleaned is None:
            raise ValueError("performed_by is required")
        return cleaned


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class QuickNotifyRequest(BaseModel):
    mail_item_id: str | None = Field(None, max_length=64)
    contact_id: str | None = Field(None, max_length=64)
    notified_by: str | None = Field(None, max_length=100)
    notification_method: str | None = Field(None, max_length=30)
