"""
Contacts API endpoints.

Contacts are the mailroom's customers. Deleting one archives it (status
"No") so its mail history stays intact.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import ContactCreate, ContactUpdate
from mailroom.contacts import ContactRepository
from mailroom.observability.logging import get_logger
from mailroom.utils.error_sanitizer import sanitize_error_message
from mailroom.utils.validators import validate_contact_data

router = APIRouter(prefix="/api/contacts", tags=["contacts"])
logger = get_logger(__name__)


@router.get("")
async def list_contacts(
    search: str | None = Query(None, max_length=100),
    status: str | None = Query(None, max_length=20),
    language_preference: str | None = Query(None, max_length=40),
    service_tier: int | None = Query(None, ge=1, le=10),
    include_archived: bool = False,
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    try:
        contacts = ContactRepository.list_contacts(
            search=search,
            status=status,
            language=language_preference,
            service_tier=service_tier,
            include_archived=include_archived,
        )
        return [contact.to_dict() for contact in contacts]
    except Exception as e:
        logger.error("Failed to list contacts: %s", e)
        raise HTTPException(status_code=500, detail="Failed to list contacts") from None


@router.get("/{contact_id}")
async def get_contact(
    contact_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    contact = ContactRepository.get_by_id(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact.to_dict()


@router.post("", status_code=201)
async def create_contact(
    request: ContactCreate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        data = validate_contact_data(request.model_dump())
        contact = ContactRepository.create(data)
        return contact.to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to create contact: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create contact") from None


@router.put("/{contact_id}")
async def update_contact(
    contact_id: str,
    request: ContactUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        updates = validate_contact_data(request.model_dump(exclude_unset=True), partial=True)
        contact = ContactRepository.update(contact_id, updates)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to update contact %s: %s", contact_id, e)
        raise HTTPException(status_code=500, detail="Failed to update contact") from None

    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact.to_dict()


@router.delete("/{contact_id}")
async def delete_contact(
    contact_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Archive a contact."""
    try:
        archived = ContactRepository.archive(contact_id)
    except Exception as e:
        logger.error("Failed to archive contact %s: %s", contact_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete contact") from None

    if not archived:
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True, "contact_id": contact_id}
