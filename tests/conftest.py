"""
Pytest configuration for Mailroom tests

Provides a throwaway SQLite database per test and an authenticated API
client with the Google token check replaced.
"""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from mailroom.api.app import create_app
from mailroom.api.middleware.user_auth import AuthenticatedUser, clear_token_cache, get_current_user
from mailroom.infrastructure.database import init_database, reset_pool
from mailroom.observability.telemetry import reset_counters

TEST_USER = AuthenticatedUser(id="user-1", email="staff@example.com", name="Front Desk")


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh, initialized database at a temporary path."""
    monkeypatch.setenv("MAILROOM_DB_PATH", str(tmp_path / "test.db"))
    reset_pool()
    init_database()
    yield tmp_path / "test.db"
    reset_pool()


@pytest.fixture
def encryption_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("MAILROOM_ENCRYPTION_KEY", key)
    return key


@pytest.fixture
def app(temp_db):
    test_app = create_app()
    test_app.dependency_overrides[get_current_user] = lambda: TEST_USER
    yield test_app
    test_app.dependency_overrides.clear()
    clear_token_cache()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_contact(temp_db):
    """Create contacts directly through the repository."""
    from mailroom.contacts.repository import ContactRepository

    def _make(**fields):
        data = {"contact_person": "Jane Smith", "mailbox_number": "101", "status": "Active"}
        data.update(fields)
        return ContactRepository.create(data)

    return _make
