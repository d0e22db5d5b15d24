"""Notification history and quick-notify endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import QuickNotifyRequest
from mailroom.notifications import NotificationRepository, NotificationService
from mailroom.observability.logging import get_logger
from mailroom.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
logger = get_logger(__name__)


@router.get("/mail-item/{mail_item_id}")
async def list_for_mail_item(
    mail_item_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    try:
        return NotificationRepository().list_for_mail_item(mail_item_id)
    except Exception as e:
        logger.error("Failed to list notifications for item %s: %s", mail_item_id, e)
        raise HTTPException(status_code=500, detail="Failed to fetch notifications") from None


@router.get("/contact/{contact_id}")
async def list_for_contact(
    contact_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    try:
        return NotificationRepository().list_for_contact(contact_id)
    except Exception as e:
        logger.error("Failed to list notifications for contact %s: %s", contact_id, e)
        raise HTTPException(status_code=500, detail="Failed to fetch notifications") from None


@router.post("/quick-notify")
async def quick_notify(
    request: QuickNotifyRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Record a notification made outside the app (phone call, text, in person)."""
    try:
        result = NotificationService.quick_notify(
            mail_item_id=request.mail_item_id or "",
            contact_id=request.contact_id or "",
            notified_by=(request.notified_by or "").strip(),
            notification_method=request.notification_method,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Quick notify failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to record notification") from None

    if result is None:
        raise HTTPException(status_code=404, detail="Mail item not found")
    return result
