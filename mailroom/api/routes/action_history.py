"""
Action history API endpoints.

History is append-only: there are no update or delete routes, and the
table itself rejects both.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import ActionHistoryBulkCreate, ActionHistoryCreate
from mailroom.mail import ActionHistoryRepository, MailItemRepository
from mailroom.mail.models import ActionHistoryEntry
from mailroom.observability.logging import get_logger
from mailroom.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/action-history", tags=["action-history"])
logger = get_logger(__name__)


def _entry(request: ActionHistoryCreate) -> ActionHistoryEntry:
    return ActionHistoryRepository.build_entry(
        request.mail_item_id,
        request.action_type,
        request.performed_by.strip(),
        action_description=request.action_description,
        previous_value=request.previous_value,
        new_value=request.new_value,
        notes=request.notes,
        action_timestamp=request.action_timestamp,
    )


@router.get("/{mail_item_id}")
async def list_action_history(
    mail_item_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    """History of one mail item, newest first."""
    try:
        return [entry.to_dict() for entry in ActionHistoryRepository.list_for_item(mail_item_id)]
    except Exception as e:
        logger.error("Failed to list action history for %s: %s", mail_item_id, e)
        raise HTTPException(status_code=500, detail="Failed to fetch action history") from None


@router.post("", status_code=201)
async def create_action_history(
    request: ActionHistoryCreate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    if MailItemRepository.get_by_id(request.mail_item_id) is None:
        raise HTTPException(status_code=404, detail="Mail item not found")

    try:
        entry = _entry(request)
        ActionHistoryRepository.append([entry])
        return entry.to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to create action history: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create action history") from None


@router.post("/bulk", status_code=201)
async def bulk_create_action_history(
    request: ActionHistoryBulkCreate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Append several entries in one transaction (all or nothing)."""
    try:
        entries = [_entry(action) for action in request.actions]
        ActionHistoryRepository.append(entries)
        return {"success": True, "count": len(entries), "actions": [entry.to_dict() for entry in entries]}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to bulk create action history: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create action history") from None
