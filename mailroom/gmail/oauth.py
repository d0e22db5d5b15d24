"""Gmail OAuth2 authentication service

Each staff user connects the Gmail account customer notifications are sent
from:
- Authorization URL carries the user id in ``state``
- Callback exchanges the code, looks up the Gmail address, stores tokens
- Tokens are refreshed when within 60 seconds of expiry
- Disconnect revokes at Google (best effort) and deletes the stored tokens

SECURITY:
- Tokens stored encrypted in database via UserCredentialsRepository
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from mailroom.infrastructure.settings import GMAIL_OAUTH_CLIENT_SECRETS, GMAIL_OAUTH_REDIRECT_URI
from mailroom.observability.logging import get_logger
from mailroom.observability.telemetry import counter, log_event
from mailroom.storage.user_credentials_repository import UserCredentialsRepository

logger = get_logger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Google adds "openid" to the granted scopes for userinfo.email
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

REFRESH_BUFFER_SECONDS = 60

REVOKE_URL = "https://oauth2.googleapis.com/revoke"


def _token_dict(credentials: Credentials) -> dict[str, Any]:
    return {
        "token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "token_uri": credentials.token_uri,
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "scopes": list(credentials.scopes or GMAIL_SCOPES),
    }


def _aware_expiry(credentials: Credentials) -> datetime:
    expiry = getattr(credentials, "expiry", None)
    if not expiry:
        return datetime.now(UTC) + timedelta(hours=1)
    return expiry if expiry.tzinfo else expiry.replace(tzinfo=UTC)


class GmailOAuthService:
    """
    Service for managing Gmail OAuth2 authentication

    Handles the complete OAuth2 flow including:
    - Authorization URL generation
    - Token exchange
    - Token refresh
    - Authenticated API client creation
    """

    def __init__(
        self,
        credentials_repo: UserCredentialsRepository | None = None,
        client_secrets_file: str | None = None,
        redirect_uri: str | None = None,
    ):
        self.credentials_repo = credentials_repo or UserCredentialsRepository()
        self.client_secrets_file = client_secrets_file or GMAIL_OAUTH_CLIENT_SECRETS
        self.redirect_uri = redirect_uri or GMAIL_OAUTH_REDIRECT_URI

    def _flow(self) -> Flow:
        """
        Raises:
            FileNotFoundError: If client secrets file not found
        """
        try:
            return Flow.from_client_secrets_file(
                self.client_secrets_file,
                scopes=GMAIL_SCOPES,
                redirect_uri=self.redirect_uri,
                autogenerate_code_verifier=False,
            )
        except FileNotFoundError as e:
            logger.error("Client secrets file not found: %s", self.client_secrets_file)
            raise FileNotFoundError(
                f"Gmail OAuth client secrets not found at {self.client_secrets_file}. "
                f"Set GMAIL_OAUTH_CLIENT_SECRETS env var to override location."
            ) from e

    def get_auth_url(self, user_id: str) -> str:
        """Google consent URL; ``state`` carries the user id back to the callback."""
        auth_url, _ = self._flow().authorization_url(
            access_type="offline",  # refresh token
            prompt="consent",  # force consent so a refresh token is always issued
            state=user_id,
        )
        logger.info("Generated Gmail OAuth URL for user: %s", user_id)
        return auth_url

    def handle_callback(self, code: str, user_id: str) -> str:
        """
        Exchange the authorization code and store the user's tokens.

        Returns:
            Connected Gmail address

        Raises:
            ValueError: If token exchange fails
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error("Failed to exchange authorization code: %s", e)
            raise ValueError(f"Token exchange failed: {e}") from e

        credentials = flow.credentials
        gmail_address = self.fetch_gmail_address(credentials)

        self.credentials_repo.store_credentials(
            user_id=user_id,
            token_dict=_token_dict(credentials),
            scopes=list(credentials.scopes or GMAIL_SCOPES),
            token_expiry=_aware_expiry(credentials),
            gmail_address=gmail_address,
        )

        counter("oauth.code_exchanged.count")
        log_event("oauth.gmail_connected", user_id=user_id)
        return gmail_address

    @staticmethod
    def fetch_gmail_address(credentials: Credentials) -> str:
        userinfo = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
        return userinfo.userinfo().get().execute()["email"]

    def get_authenticated_credentials(self, user_id: str, auto_refresh: bool = True) -> Credentials | None:
        """
        Returns:
            Google OAuth2 Credentials object or None if not connected

        Raises:
            CredentialEncryptionError: If decryption fails
        """
        creds_data = self.credentials_repo.get_by_user_id(user_id, decrypt=True)
        if not creds_data:
            logger.warning("No credentials found for user: %s", user_id)
            return None

        token_dict = creds_data["token_dict"]
        credentials = Credentials(
            token=token_dict.get("token"),
            refresh_token=token_dict.get("refresh_token"),
            token_uri=token_dict.get("token_uri"),
            client_id=token_dict.get("client_id"),
            client_secret=token_dict.get("client_secret"),
            scopes=creds_data["scopes"],
        )

        if auto_refresh and self.credentials_repo.is_token_expired(user_id, buffer_seconds=REFRESH_BUFFER_SECONDS):
            logger.info("Token expired or expiring soon, refreshing for user: %s", user_id)
            credentials = self.refresh_credentials(user_id, credentials)

        return credentials

    def refresh_credentials(self, user_id: str, credentials: Credentials) -> Credentials:
        """
        Raises:
            ValueError: If refresh fails

        Side Effects:
            - Calls Google OAuth2 API to refresh token
            - Re-stores encrypted tokens and stamps last_refresh_at
        """
        if not credentials.refresh_token:
            raise ValueError(f"No refresh token available for user: {user_id}")

        try:
            credentials.refresh(Request())
        except Exception as e:
            logger.error("Failed to refresh credentials for user %s: %s", user_id, e)
            raise ValueError(f"Token refresh failed: {e}") from e

        self.credentials_repo.store_credentials(
            user_id=user_id,
            token_dict=_token_dict(credentials),
            scopes=list(credentials.scopes or GMAIL_SCOPES),
            token_expiry=_aware_expiry(credentials),
        )
        self.credentials_repo.update_refresh_timestamp(user_id)

        counter("oauth.token_refreshed.count")
        log_event("oauth.token_refreshed", user_id=user_id)
        return credentials

    def build_gmail_service(self, user_id: str) -> Any:
        """
        Raises:
            ValueError: If Gmail is not connected for this user
        """
        credentials = self.get_authenticated_credentials(user_id)
        if not credentials:
            raise ValueError("No OAuth tokens found. Please connect Gmail first.")
        return build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def has_gmail_connected(self, user_id: str) -> bool:
        return self.credentials_repo.get_by_user_id(user_id, decrypt=False) is not None

    def get_gmail_address(self, user_id: str) -> str | None:
        creds_data = self.credentials_repo.get_by_user_id(user_id, decrypt=False)
        return creds_data["gmail_address"] if creds_data else None

    def revoke_credentials(self, user_id: str) -> None:
        """
        Revoke at Google and delete stored tokens.

        Side Effects:
            - Calls Google OAuth2 API to revoke token (failures are logged only)
            - Deletes row from user_credentials
        """
        try:
            credentials = self.get_authenticated_credentials(user_id, auto_refresh=False)
            if credentials and credentials.token:
                response = httpx.post(REVOKE_URL, params={"token": credentials.token}, timeout=10.0)
                response.raise_for_status()
                logger.info("Revoked OAuth token for user: %s", user_id)
        except Exception as e:
            logger.warning("Failed to revoke token (may already be invalid): %s", e)

        # Delete from database regardless of revocation success
        self.credentials_repo.delete_credentials(user_id)
        counter("oauth.credentials_revoked.count")
        log_event("oauth.credentials_revoked", user_id=user_id)
