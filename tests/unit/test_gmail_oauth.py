"""Unit tests for Gmail OAuth service

Tests cover:
- Authorization URL generation
- Code exchange on callback
- Credential retrieval and refresh
- Service building
- Disconnect / revocation
- Encrypted credential storage
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from mailroom.gmail.oauth import GMAIL_SCOPES, REVOKE_URL, GmailOAuthService
from mailroom.storage.user_credentials_repository import (
    CredentialEncryptionError,
    UserCredentialsRepository,
)

STORED = {
    "user_id": "user-1",
    "token_dict": {
        "token": "test-token",
        "refresh_token": "test-refresh",
        "token_uri": "https://oauth2.googleapis.com/token",
        "client_id": "test-client-id",
        "client_secret": "test-secret",
    },
    "scopes": GMAIL_SCOPES,
    "token_expiry": datetime.now(UTC) + timedelta(hours=1),
    "gmail_address": "desk@example.com",
}


@pytest.fixture
def mock_credentials_repo():
    """Mock UserCredentialsRepository"""
    return Mock(spec=UserCredentialsRepository)


@pytest.fixture
def oauth_service(mock_credentials_repo):
    return GmailOAuthService(
        credentials_repo=mock_credentials_repo,
        redirect_uri="http://localhost:8000/api/oauth/gmail/callback",
    )


@pytest.fixture
def mock_client_secrets(tmp_path):
    """Create temporary client secrets file"""
    secrets_file = tmp_path / "client_secret.json"
    secrets_file.write_text(
        json.dumps(
            {
                "web": {
                    "client_id": "test-client-id.apps.googleusercontent.com",
                    "client_secret": "test-client-secret",
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": "https://oauth2.googleapis.com/token",
                    "redirect_uris": ["http://localhost:8000/api/oauth/gmail/callback"],
                }
            }
        )
    )
    return str(secrets_file)


def test_get_auth_url(oauth_service, mock_client_secrets):
    """Consent URL requests offline access and carries the user id"""
    oauth_service.client_secrets_file = mock_client_secrets

    auth_url = oauth_service.get_auth_url("user-1")

    query = parse_qs(urlparse(auth_url).query)
    assert "accounts.google.com" in auth_url
    assert query["client_id"] == ["test-client-id.apps.googleusercontent.com"]
    assert query["state"] == ["user-1"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["redirect_uri"] == ["http://localhost:8000/api/oauth/gmail/callback"]


def test_get_auth_url_missing_secrets(oauth_service):
    oauth_service.client_secrets_file = "/nonexistent/client_secret.json"

    with pytest.raises(FileNotFoundError) as exc_info:
        oauth_service.get_auth_url("user-1")

    assert "GMAIL_OAUTH_CLIENT_SECRETS" in str(exc_info.value)


@patch("mailroom.gmail.oauth.build")
@patch("mailroom.gmail.oauth.Flow")
def test_handle_callback_stores_tokens(mock_flow_class, mock_build, oauth_service, mock_credentials_repo):
    """Code exchange stores encrypted tokens and the connected address"""
    mock_credentials = Mock()
    mock_credentials.token = "test-access-token"
    mock_credentials.refresh_token = "test-refresh-token"
    mock_credentials.token_uri = "https://oauth2.googleapis.com/token"
    mock_credentials.client_id = "test-client-id"
    mock_credentials.client_secret = "test-client-secret"
    mock_credentials.scopes = GMAIL_SCOPES
    mock_credentials.expiry = datetime(2026, 3, 10, 12, 0)  # google-auth hands back naive UTC

    mock_flow = Mock()
    mock_flow.credentials = mock_credentials
    mock_flow_class.from_client_secrets_file.return_value = mock_flow
    mock_build.return_value.userinfo.return_value.get.return_value.execute.return_value = {
        "email": "desk@example.com"
    }

    address = oauth_service.handle_callback("test-auth-code", "user-1")

    assert address == "desk@example.com"
    mock_flow.fetch_token.assert_called_once_with(code="test-auth-code")
    assert mock_build.call_args[0][:2] == ("oauth2", "v2")

    kwargs = mock_credentials_repo.store_credentials.call_args[1]
    assert kwargs["user_id"] == "user-1"
    assert kwargs["token_dict"]["refresh_token"] == "test-refresh-token"
    assert kwargs["scopes"] == GMAIL_SCOPES
    assert kwargs["token_expiry"] == datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
    assert kwargs["gmail_address"] == "desk@example.com"


@patch("mailroom.gmail.oauth.Flow")
def test_handle_callback_exchange_failure(mock_flow_class, oauth_service, mock_credentials_repo):
    mock_flow_class.from_client_secrets_file.return_value.fetch_token.side_effect = RuntimeError("invalid_grant")

    with pytest.raises(ValueError, match="Token exchange failed"):
        oauth_service.handle_callback("bad-code", "user-1")

    mock_credentials_repo.store_credentials.assert_not_called()


def test_get_authenticated_credentials_not_found(oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = None

    assert oauth_service.get_authenticated_credentials("user-1") is None


def test_get_authenticated_credentials_valid(oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = STORED
    mock_credentials_repo.is_token_expired.return_value = False

    credentials = oauth_service.get_authenticated_credentials("user-1")

    assert credentials.token == "test-token"
    assert credentials.refresh_token == "test-refresh"
    mock_credentials_repo.is_token_expired.assert_called_once_with("user-1", buffer_seconds=60)


def test_get_authenticated_credentials_auto_refresh(oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = STORED
    mock_credentials_repo.is_token_expired.return_value = True

    with patch.object(oauth_service, "refresh_credentials") as mock_refresh:
        credentials = oauth_service.get_authenticated_credentials("user-1")

    mock_refresh.assert_called_once()
    assert credentials == mock_refresh.return_value


@patch("mailroom.gmail.oauth.Request")
def test_refresh_credentials(mock_request, oauth_service, mock_credentials_repo):
    mock_creds = Mock()
    mock_creds.token = "old-token"
    mock_creds.refresh_token = "test-refresh"
    mock_creds.scopes = GMAIL_SCOPES
    mock_creds.expiry = None

    def mock_refresh_func(request):
        mock_creds.token = "new-token"

    mock_creds.refresh = mock_refresh_func

    oauth_service.refresh_credentials("user-1", mock_creds)

    kwargs = mock_credentials_repo.store_credentials.call_args[1]
    assert kwargs["token_dict"]["token"] == "new-token"
    assert "gmail_address" not in kwargs
    mock_credentials_repo.update_refresh_timestamp.assert_called_once_with("user-1")


def test_refresh_credentials_no_refresh_token(oauth_service):
    mock_creds = Mock()
    mock_creds.refresh_token = None

    with pytest.raises(ValueError, match="No refresh token"):
        oauth_service.refresh_credentials("user-1", mock_creds)


@patch("mailroom.gmail.oauth.Request")
def test_refresh_credentials_failure(mock_request, oauth_service, mock_credentials_repo):
    mock_creds = Mock()
    mock_creds.refresh.side_effect = RuntimeError("invalid_grant")

    with pytest.raises(ValueError, match="Token refresh failed"):
        oauth_service.refresh_credentials("user-1", mock_creds)

    mock_credentials_repo.store_credentials.assert_not_called()


@patch("mailroom.gmail.oauth.build")
def test_build_gmail_service(mock_build, oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = STORED
    mock_credentials_repo.is_token_expired.return_value = False

    service = oauth_service.build_gmail_service("user-1")

    assert mock_build.call_args[0][:2] == ("gmail", "v1")
    assert service == mock_build.return_value


def test_build_gmail_service_no_credentials(oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = None

    with pytest.raises(ValueError, match="connect Gmail first"):
        oauth_service.build_gmail_service("user-1")


def test_connection_status(oauth_service, mock_credentials_repo):
    mock_credentials_repo.get_by_user_id.return_value = STORED

    assert oauth_service.has_gmail_connected("user-1") is True
    assert oauth_service.get_gmail_address("user-1") == "desk@example.com"
    mock_credentials_repo.get_by_user_id.assert_called_with("user-1", decrypt=False)


@patch("mailroom.gmail.oauth.httpx")
def test_revoke_credentials(mock_httpx, oauth_service, mock_credentials_repo):
    mock_creds = Mock(token="test-token")

    with patch.object(oauth_service, "get_authenticated_credentials", return_value=mock_creds):
        oauth_service.revoke_credentials("user-1")

    mock_httpx.post.assert_called_once_with(REVOKE_URL, params={"token": "test-token"}, timeout=10.0)
    mock_credentials_repo.delete_credentials.assert_called_once_with("user-1")


@patch("mailroom.gmail.oauth.httpx.post")
def test_revoke_failure_still_deletes(mock_post, oauth_service, mock_credentials_repo):
    mock_post.side_effect = httpx.ConnectError("offline")

    with patch.object(oauth_service, "get_authenticated_credentials", return_value=Mock(token="test-token")):
        oauth_service.revoke_credentials("user-1")

    mock_credentials_repo.delete_credentials.assert_called_once_with("user-1")


def test_revoke_credentials_no_credentials(oauth_service, mock_credentials_repo):
    """Revoke still deletes even if no credentials exist"""
    with patch.object(oauth_service, "get_authenticated_credentials", return_value=None):
        oauth_service.revoke_credentials("user-1")

    mock_credentials_repo.delete_credentials.assert_called_once_with("user-1")


# =============================================================================
# UserCredentialsRepository
# =============================================================================


def test_encryption_key_required(monkeypatch):
    monkeypatch.delenv("MAILROOM_ENCRYPTION_KEY", raising=False)

    with pytest.raises(ValueError) as exc_info:
        UserCredentialsRepository()

    assert "MAILROOM_ENCRYPTION_KEY" in str(exc_info.value)


def test_invalid_encryption_key(monkeypatch):
    monkeypatch.setenv("MAILROOM_ENCRYPTION_KEY", "not-a-fernet-key")

    with pytest.raises(ValueError, match="Invalid encryption key format"):
        UserCredentialsRepository()


def test_credential_encryption_decryption(encryption_key):
    repo = UserCredentialsRepository()
    token_dict = {
        "token": "sensitive-access-token",
        "refresh_token": "sensitive-refresh-token",
        "client_secret": "sensitive-secret",
    }

    encrypted = repo._encrypt_token(token_dict)

    assert "sensitive-access-token" not in encrypted
    assert repo._decrypt_token(encrypted) == token_dict


def test_credential_encryption_error_handling(encryption_key):
    repo = UserCredentialsRepository()

    with pytest.raises(CredentialEncryptionError):
        repo._decrypt_token("not-valid-encrypted-data")


def test_store_and_read_back(temp_db, encryption_key):
    repo = UserCredentialsRepository()
    expiry = datetime.now(UTC) + timedelta(hours=1)

    repo.store_credentials("user-1", STORED["token_dict"], GMAIL_SCOPES, expiry, gmail_address="desk@example.com")
    stored = repo.get_by_user_id("user-1")

    assert stored["token_dict"] == STORED["token_dict"]
    assert stored["scopes"] == GMAIL_SCOPES
    assert stored["token_expiry"] == expiry
    assert repo.get_by_user_id("user-1", decrypt=False)["encrypted_token_json"] != json.dumps(STORED["token_dict"])


def test_restore_keeps_gmail_address(temp_db, encryption_key):
    """A token refresh re-stores without an address; the old one stays"""
    repo = UserCredentialsRepository()
    repo.store_credentials("user-1", {"token": "a"}, GMAIL_SCOPES, gmail_address="desk@example.com")
    repo.store_credentials("user-1", {"token": "b"}, GMAIL_SCOPES)

    stored = repo.get_by_user_id("user-1")
    assert stored["token_dict"] == {"token": "b"}
    assert stored["gmail_address"] == "desk@example.com"


def test_is_token_expired(temp_db, encryption_key):
    repo = UserCredentialsRepository()

    assert repo.is_token_expired("nobody") is True

    repo.store_credentials("user-1", {"token": "a"}, GMAIL_SCOPES, datetime.now(UTC) + timedelta(seconds=30))
    assert repo.is_token_expired("user-1", buffer_seconds=60) is True
    assert repo.is_token_expired("user-1", buffer_seconds=0) is False

    repo.store_credentials("user-1", {"token": "a"}, GMAIL_SCOPES, token_expiry=None)
    assert repo.is_token_expired("user-1") is True


def test_delete_credentials(temp_db, encryption_key):
    repo = UserCredentialsRepository()
    repo.store_credentials("user-1", {"token": "a"}, GMAIL_SCOPES)
    repo.update_refresh_timestamp("user-1")
    assert repo.get_by_user_id("user-1", decrypt=False)["last_refresh_at"] is not None

    repo.delete_credentials("user-1")

    assert repo.get_by_user_id("user-1") is None
