"""
Staff authentication for the Mailroom API.

Verifies Google OAuth access tokens sent by the dashboard and the scan
station, and exposes the staff user's Google identity to routes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import httpx
from cachetools import TTLCache
from fastapi import HTTPException, Request, status

from mailroom.config import is_production
from mailroom.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

_CACHE_MAX_SIZE = 1000
# Shorter than Google's 1 hour token lifetime so revoked tokens drop out
_CACHE_TTL_SECONDS = 600


@dataclass
class AuthenticatedUser:
    """Google identity of the signed-in staff member."""

    id: str
    email: str
    name: str | None = None
    picture: str | None = None

    def __str__(self) -> str:
        return f"User({self.id}, {self.email})"


_token_cache: TTLCache[str, AuthenticatedUser] = TTLCache(maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS)


def _unavailable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_google_token(token: str) -> AuthenticatedUser:
    """
    Verify a Google OAuth access token and return the user behind it.

    Raises:
        HTTPException: 401 for invalid/expired tokens or a foreign audience,
            503 when Google cannot be reached
    """
    if token in _token_cache:
        return _token_cache[token]

    async with httpx.AsyncClient() as client:
        try:
            token_response = await client.get(
                GOOGLE_TOKEN_INFO_URL,
                params={"access_token": token},
                timeout=10.0,
            )
        except httpx.TimeoutException:
            logger.warning("Token validation timed out")
            raise _unavailable("Authentication service unavailable") from None
        except httpx.RequestError as e:
            logger.error("Token validation request failed: %s", e)
            raise _unavailable("Authentication service unavailable") from e

        if token_response.status_code != 200:
            logger.warning("Invalid token: %s", token_response.text)
            raise _unauthorized("Invalid or expired token")

        token_info = token_response.json()

        expected_client_id = os.getenv("GOOGLE_OAUTH_CLIENT_ID")
        if not expected_client_id and is_production():
            logger.error("GOOGLE_OAUTH_CLIENT_ID not configured in production!")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: OAuth client ID not set",
            )

        if expected_client_id:
            aud = token_info.get("aud", "")
            if aud != expected_client_id:
                logger.warning("Token audience mismatch: expected=%s, got=%s", expected_client_id, aud)
                raise _unauthorized("Token not issued for this application")
        else:
            logger.warning("GOOGLE_OAUTH_CLIENT_ID not set - skipping audience validation (dev mode only)")

        try:
            userinfo_response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {token}"},
                timeout=10.0,
            )
        except (httpx.TimeoutException, httpx.RequestError) as e:
            logger.error("Failed to get user info: %s", e)
            raise _unavailable("Failed to retrieve user information") from e

        if userinfo_response.status_code != 200:
            logger.warning("Failed to get user info: %s", userinfo_response.text)
            raise _unauthorized("Failed to retrieve user information")

        userinfo = userinfo_response.json()

    user = AuthenticatedUser(
        id=userinfo["id"],
        email=userinfo.get("email", ""),
        name=userinfo.get("name"),
        picture=userinfo.get("picture"),
    )
    _token_cache[token] = user

    logger.info("Authenticated user: %s (cache size: %d)", user, len(_token_cache))
    return user


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise _unauthorized("Missing authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format. Expected: Bearer <token>")

    return parts[1]


async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency for the signed-in staff user.

    Usage:
        @router.get("/endpoint")
        async def endpoint(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    return await verify_google_token(token)


def clear_token_cache() -> None:
    _token_cache.clear()
