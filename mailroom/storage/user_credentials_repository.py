"""Staff Gmail OAuth credentials

Tokens for the Gmail account each staff user connects for outbound customer
notifications.

SECURITY:
- Tokens encrypted with Fernet (symmetric encryption)
- Encryption key must be set via MAILROOM_ENCRYPTION_KEY environment variable
- Token expiry tracked so the OAuth service refreshes one minute early
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from mailroom.observability.logging import get_logger
from mailroom.storage import BaseRepository

logger = get_logger(__name__)


class CredentialEncryptionError(Exception):
    """Raised when credential encryption/decryption fails"""


class UserCredentialsRepository(BaseRepository):
    """
    Encrypted storage of per-user Gmail OAuth tokens.

    One row per staff user; storing again replaces the previous tokens.
    """

    def __init__(self) -> None:
        super().__init__("user_credentials")
        self._cipher = self._get_cipher()

    def _get_cipher(self) -> Fernet:
        """
        Raises:
            ValueError: If MAILROOM_ENCRYPTION_KEY is missing or malformed
        """
        encryption_key = os.getenv("MAILROOM_ENCRYPTION_KEY")

        if not encryption_key:
            raise ValueError(
                "MAILROOM_ENCRYPTION_KEY environment variable must be set. "
                "Generate one with: python -c "
                "'from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())'"
            )

        try:
            return Fernet(encryption_key.encode())
        except ValueError as e:
            raise ValueError(f"Invalid encryption key format: {e}") from e

    def _encrypt_token(self, token_dict: dict[str, Any]) -> str:
        try:
            return self._cipher.encrypt(json.dumps(token_dict).encode()).decode()
        except (TypeError, ValueError) as e:
            logger.error("Failed to encrypt token: %s", e)
            raise CredentialEncryptionError(f"Encryption failed: {e}") from e

    def _decrypt_token(self, encrypted_token: str) -> dict[str, Any]:
        try:
            return json.loads(self._cipher.decrypt(encrypted_token.encode()).decode())
        except (InvalidToken, ValueError) as e:
            logger.error("Failed to decrypt token: %s", e)
            raise CredentialEncryptionError(f"Decryption failed: {e}") from e

    def store_credentials(
        self,
        user_id: str,
        token_dict: dict[str, Any],
        scopes: list[str],
        token_expiry: datetime | None = None,
        gmail_address: str | None = None,
    ) -> None:
        """
        Store or replace a user's Gmail tokens.

        An existing gmail_address is kept when the caller does not supply one
        (token refreshes do not re-fetch the profile).

        Side Effects:
            - Upserts the user_credentials row
        """
        encrypted_token = self._encrypt_token(token_dict)
        expiry_str = token_expiry.isoformat() if token_expiry else None

        self.execute(
            """
            INSERT INTO user_credentials
                (user_id, encrypted_token_json, scopes, token_expiry, gmail_address)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                encrypted_token_json = excluded.encrypted_token_json,
                scopes = excluded.scopes,
                token_expiry = excluded.token_expiry,
                gmail_address = COALESCE(excluded.gmail_address, user_credentials.gmail_address),
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, encrypted_token, json.dumps(scopes), expiry_str, gmail_address),
        )
        logger.info("Stored credentials for user: %s", user_id)

    def get_by_user_id(self, user_id: str, decrypt: bool = True) -> dict[str, Any] | None:
        """
        Get credentials for a user

        Returns:
            Dict with user_id, scopes, token_expiry, gmail_address, timestamps and
            either token_dict (decrypt=True) or encrypted_token_json; None if absent

        Raises:
            CredentialEncryptionError: If decryption fails
        """
        row = self.query_one("SELECT * FROM user_credentials WHERE user_id = ?", (user_id,))

        if not row:
            return None

        token_expiry = datetime.fromisoformat(row["token_expiry"]) if row["token_expiry"] else None
        if token_expiry and token_expiry.tzinfo is None:
            token_expiry = token_expiry.replace(tzinfo=UTC)

        result: dict[str, Any] = {
            "user_id": row["user_id"],
            "scopes": json.loads(row["scopes"]),
            "token_expiry": token_expiry,
            "gmail_address": row["gmail_address"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "last_refresh_at": row["last_refresh_at"],
        }

        if decrypt:
            result["token_dict"] = self._decrypt_token(row["encrypted_token_json"])
        else:
            result["encrypted_token_json"] = row["encrypted_token_json"]

        return result

    def is_token_expired(self, user_id: str, buffer_seconds: int = 60) -> bool:
        """
        True when the token is expired or expires within buffer_seconds.

        Missing credentials or a missing expiry count as expired.
        """
        credentials = self.get_by_user_id(user_id, decrypt=False)

        if not credentials or not credentials["token_expiry"]:
            return True

        return credentials["token_expiry"] <= datetime.now(UTC) + timedelta(seconds=buffer_seconds)

    def update_refresh_timestamp(self, user_id: str) -> None:
        self.execute(
            "UPDATE user_credentials SET last_refresh_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (user_id,),
        )

    def delete_credentials(self, user_id: str) -> None:
        """
        Side Effects:
            - Permanently removes the user's encrypted tokens
        """
        self.execute(f"DELETE FROM {self.table_name} WHERE user_id = ?", (user_id,))
        logger.info("Deleted credentials for user: %s", user_id)
