"""
Database schema initialization for Mailroom.

Holds the SQL schema, the default message templates, and schema validation,
kept apart from database.py so the pool module stays small.
"""

from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path

from mailroom.observability.logging import get_logger

logger = get_logger(__name__)

# Templates used by scan bulk-submit; {{Placeholders}} are filled per contact.
DEFAULT_TEMPLATES: list[tuple[str, str, str]] = [
    (
        "New Mail Notification",
        "You have new mail - Mailbox {{BoxNumber}}",
        "Hello {{Name}},\n\nYou have received {{Type}} at mailbox {{BoxNumber}} on {{Date}}.\n"
        "Please pick it up at your convenience.\n\nThank you!",
    ),
    (
        "Scan: Letters Only",
        "You have {{LetterCount}} new {{LetterText}} - Mailbox {{BoxNumber}}",
        "Hello {{Name}},\n\nWe received {{LetterCount}} {{LetterText}} for mailbox {{BoxNumber}} "
        "on {{Date}}.\n\nThank you!",
    ),
    (
        "Scan: Packages Only",
        "You have {{PackageCount}} new {{PackageText}} - Mailbox {{BoxNumber}}",
        "Hello {{Name}},\n\nWe received {{PackageCount}} {{PackageText}} for mailbox {{BoxNumber}} "
        "on {{Date}}.\nPlease pick up at your earliest convenience.\n\nThank you!",
    ),
    (
        "Scan: Mixed Items",
        "You have {{TotalCount}} new items - Mailbox {{BoxNumber}}",
        "Hello {{Name}},\n\nWe received {{LetterCount}} {{LetterText}} and {{PackageCount}} "
        "{{PackageText}} for mailbox {{BoxNumber}} on {{Date}}.\n\nThank you!",
    ),
]


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS and
    INSERT OR IGNORE for the template seed rows.

    Side Effects:
    - Creates the parent directory and database file if needed
    - Creates tables, indexes and append-only triggers
    - Seeds default message templates
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS contacts (
            contact_id TEXT PRIMARY KEY,
            contact_person TEXT,
            company_name TEXT,
            mailbox_number TEXT,
            unit_number TEXT,
            email TEXT,
            phone_number TEXT,
            language_preference TEXT,
            service_tier INTEGER,
            display_name_preference TEXT NOT NULL DEFAULT 'auto',
            status TEXT NOT NULL DEFAULT 'PENDING',
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_contacts_mailbox ON contacts(mailbox_number);
        CREATE INDEX IF NOT EXISTS idx_contacts_status ON contacts(status);

        CREATE TABLE IF NOT EXISTS mail_items (
            mail_item_id TEXT PRIMARY KEY,
            contact_id TEXT NOT NULL REFERENCES contacts(contact_id),
            item_type TEXT NOT NULL DEFAULT 'Package',
            quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
            status TEXT NOT NULL DEFAULT 'Received',
            description TEXT,
            received_date TEXT NOT NULL,
            pickup_date TEXT,
            last_notified TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_mail_items_contact ON mail_items(contact_id);
        CREATE INDEX IF NOT EXISTS idx_mail_items_received ON mail_items(received_date);

        -- Audit log: rows outlive their mail item, so no foreign key here.
        CREATE TABLE IF NOT EXISTS action_history (
            action_id TEXT PRIMARY KEY,
            mail_item_id TEXT NOT NULL,
            action_type TEXT NOT NULL,
            action_description TEXT,
            previous_value TEXT,
            new_value TEXT,
            notes TEXT,
            performed_by TEXT NOT NULL,
            action_timestamp TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_action_history_item
        ON action_history(mail_item_id, action_timestamp);

        CREATE TRIGGER IF NOT EXISTS action_history_no_update
        BEFORE UPDATE ON action_history
        BEGIN
            SELECT RAISE(ABORT, 'action_history is append-only');
        END;

        CREATE TRIGGER IF NOT EXISTS action_history_no_delete
        BEFORE DELETE ON action_history
        BEGIN
            SELECT RAISE(ABORT, 'action_history is append-only');
        END;

        CREATE TABLE IF NOT EXISTS message_templates (
            template_id TEXT PRIMARY KEY,
            template_name TEXT UNIQUE NOT NULL,
            subject_line TEXT NOT NULL,
            message_body TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS notification_history (
            notification_id TEXT PRIMARY KEY,
            contact_id TEXT NOT NULL REFERENCES contacts(contact_id),
            mail_item_id TEXT REFERENCES mail_items(mail_item_id) ON DELETE CASCADE,
            template_id TEXT,
            message_type TEXT NOT NULL DEFAULT 'Initial',
            channel TEXT NOT NULL DEFAULT 'Email',
            message_content TEXT,
            notified_by TEXT,
            sent_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_notification_history_item
        ON notification_history(mail_item_id);

        CREATE INDEX IF NOT EXISTS idx_notification_history_contact
        ON notification_history(contact_id);

        CREATE TABLE IF NOT EXISTS todos (
            todo_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            notes TEXT,
            date_header TEXT,
            priority INTEGER NOT NULL DEFAULT 0,
            category TEXT,
            is_completed INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            created_by_name TEXT,
            completed_by_name TEXT,
            last_edited_by_name TEXT,
            owner_user_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            deleted_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_todos_date ON todos(date_header);

        CREATE TABLE IF NOT EXISTS user_credentials (
            user_id TEXT PRIMARY KEY,
            encrypted_token_json TEXT NOT NULL,
            scopes TEXT NOT NULL,
            token_expiry TEXT,
            gmail_address TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            last_refresh_at TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS llm_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            call_type TEXT NOT NULL,
            call_date DATE NOT NULL,
            call_count INTEGER DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(user_id, call_type, call_date)
        );

        CREATE INDEX IF NOT EXISTS idx_llm_usage_date ON llm_usage(call_date);
    """)

    conn.executemany(
        """
        INSERT OR IGNORE INTO message_templates (template_id, template_name, subject_line, message_body)
        VALUES (?, ?, ?, ?)
        """,
        [(str(uuid.uuid4()), name, subject, body) for name, subject, body in DEFAULT_TEMPLATES],
    )

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Args:
        conn: Active database connection

    Returns:
        True if valid

    Raises:
        ValueError: If tables or columns are missing
    """
    required_tables = {
        "contacts": ["contact_id", "contact_person", "company_name", "mailbox_number", "status"],
        "mail_items": ["mail_item_id", "contact_id", "item_type", "quantity", "status"],
        "action_history": ["action_id", "mail_item_id", "action_type", "performed_by"],
        "message_templates": ["template_id", "template_name", "subject_line", "message_body"],
        "notification_history": ["notification_id", "contact_id", "mail_item_id"],
        "todos": ["todo_id", "title", "date_header", "is_completed"],
        "user_credentials": ["user_id", "encrypted_token_json", "scopes"],
        "llm_usage": ["user_id", "call_type", "call_date", "call_count"],
    }

    cursor = conn.cursor()

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables.keys()) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Identifiers come from the dict above; PRAGMA cannot take parameters
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
