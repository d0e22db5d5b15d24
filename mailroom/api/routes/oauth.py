"""
Gmail OAuth endpoints.

The callback is hit by Google's redirect, not by the dashboard, so it is the
one route without bearer auth; the staff user is identified by ``state``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.config import FRONTEND_URL
from mailroom.gmail.oauth import GmailOAuthService
from mailroom.observability.logging import get_logger

router = APIRouter(prefix="/api/oauth/gmail", tags=["oauth"])
logger = get_logger(__name__)

SETTINGS_PATH = "/dashboard/settings"


def get_oauth_service() -> GmailOAuthService:
    return GmailOAuthService()


@router.get("/auth-url")
async def get_auth_url(
    user: AuthenticatedUser = Depends(get_current_user),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> dict[str, str]:
    try:
        return {"authUrl": oauth.get_auth_url(user.id)}
    except FileNotFoundError as e:
        logger.error("Gmail OAuth not configured: %s", e)
        raise HTTPException(status_code=503, detail="Gmail integration is not configured") from None
    except Exception as e:
        logger.error("Failed to build Gmail auth URL: %s", e)
        raise HTTPException(status_code=500, detail="Failed to start Gmail authorization") from None


@router.get("/callback")
async def oauth_callback(
    code: str | None = Query(None, max_length=2000),
    state: str | None = Query(None, max_length=200),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> RedirectResponse:
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code is required")
    if not state:
        raise HTTPException(status_code=400, detail="User state is required")

    try:
        oauth.handle_callback(code, state)
    except Exception as e:
        logger.error("Gmail OAuth callback failed for user %s: %s", state, e)
        return RedirectResponse(f"{FRONTEND_URL}{SETTINGS_PATH}?gmail=error", status_code=302)

    return RedirectResponse(f"{FRONTEND_URL}{SETTINGS_PATH}?gmail=connected", status_code=302)


@router.get("/status")
async def gmail_status(
    user: AuthenticatedUser = Depends(get_current_user),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> dict[str, Any]:
    try:
        connected = oauth.has_gmail_connected(user.id)
        address = oauth.get_gmail_address(user.id) if connected else None
    except Exception as e:
        logger.error("Failed to read Gmail status for %s: %s", user.id, e)
        raise HTTPException(status_code=500, detail="Failed to get Gmail status") from None
    return {"connected": connected, "gmailAddress": address}


@router.post("/disconnect")
async def disconnect_gmail(
    user: AuthenticatedUser = Depends(get_current_user),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> dict[str, Any]:
    try:
        oauth.revoke_credentials(user.id)
    except Exception as e:
        logger.error("Failed to disconnect Gmail for %s: %s", user.id, e)
        raise HTTPException(status_code=500, detail="Failed to disconnect Gmail") from None
    return {"success": True, "message": "Gmail disconnected successfully"}
