"""
Mail items API endpoints.

The mail log: every received letter or package, its status, and how many
times its owner has been notified.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import MailItemCreate, MailItemUpdate
from mailroom.config import API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX
from mailroom.mail import MailItemRepository
from mailroom.mail.grouping import group_mail_items, sort_groups
from mailroom.observability.logging import get_logger
from mailroom.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/mail-items", tags=["mail-items"])
logger = get_logger(__name__)


@router.get("")
async def list_mail_items(
    contact_id: str | None = Query(None, max_length=64),
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    try:
        return MailItemRepository.list_items(contact_id=contact_id, limit=limit)
    except Exception as e:
        logger.error("Failed to list mail items: %s", e)
        raise HTTPException(status_code=500, detail="Failed to list mail items") from None


@router.get("/grouped")
async def list_grouped_mail_items(
    contact_id: str | None = Query(None, max_length=64),
    sort: str = Query("date", max_length=20),
    direction: str = Query("desc", max_length=4),
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """Mail log rows grouped per contact, day and item type, then sorted."""
    try:
        items = MailItemRepository.list_items(contact_id=contact_id, limit=limit)
        groups = sort_groups(group_mail_items(items), key=sort, direction=direction)
        return [group.to_dict() for group in groups]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to group mail items: %s", e)
        raise HTTPException(status_code=500, detail="Failed to list mail items") from None


@router.post("", status_code=201)
async def create_mail_item(
    request: MailItemCreate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        item = MailItemRepository.create(
            contact_id=request.contact_id,
            item_type=request.item_type,
            quantity=request.quantity,
            status=request.status,
            description=request.description,
            received_date=request.received_date,
            performed_by=request.performed_by,
        )
        return item.to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to create mail item: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create mail item") from None


@router.put("/{mail_item_id}")
async def update_mail_item(
    mail_item_id: str,
    request: MailItemUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    updates = request.model_dump(exclude={"performed_by", "notes"}, exclude_none=True)
    try:
        item = MailItemRepository.update(
            mail_item_id,
            updates,
            performed_by=request.performed_by,
            notes=request.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to update mail item %s: %s", mail_item_id, e)
        raise HTTPException(status_code=500, detail="Failed to update mail item") from None

    if item is None:
        raise HTTPException(status_code=404, detail="Mail item not found")
    return item.to_dict()


@router.delete("/{mail_item_id}")
async def delete_mail_item(
    mail_item_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        deleted = MailItemRepository.delete(mail_item_id)
    except Exception as e:
        logger.error("Failed to delete mail item %s: %s", mail_item_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete mail item") from None

    if not deleted:
        raise HTTPException(status_code=404, detail="Mail item not found")
    return {"success": True, "mail_item_id": mail_item_id}
