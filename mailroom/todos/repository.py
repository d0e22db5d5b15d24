"""
Todo Repository - staff task list.

Deletes are soft (deleted_at); every read hides deleted rows.
"""

from __future__ import annotations

import uuid
from typing import Any

from mailroom.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from mailroom.observability.logging import get_logger
from mailroom.storage import utcnow_iso
from mailroom.todos.models import Todo, normalize_date_header
from mailroom.utils.validators import ValidationError

logger = get_logger(__name__)

DEFAULT_STAFF_NAME = "Staff"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class TodoRepository:
    """Static CRUD helpers over the todos table."""

    @staticmethod
    def list_todos(
        date: str | None = None,
        completed: bool | None = None,
        category: str | None = None,
    ) -> list[Todo]:
        """
        List live todos: newest date bucket first (undated last), then
        sort_order, then newest created.
        """
        clauses = ["deleted_at IS NULL"]
        params: list[Any] = []
        if date:
            clauses.append("date_header = ?")
            params.append(normalize_date_header(date))
        if completed is not None:
            clauses.append("is_completed = ?")
            params.append(1 if completed else 0)
        if category:
            clauses.append("category = ?")
            params.append(category)

        with get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM todos
                WHERE {' AND '.join(clauses)}
                ORDER BY date_header IS NULL, date_header DESC, sort_order ASC, created_at DESC
                """,
                tuple(params),
            ).fetchall()
        return [Todo.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def get_by_id(todo_id: str) -> Todo | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM todos WHERE todo_id = ? AND deleted_at IS NULL", (todo_id,)
            ).fetchone()
        return Todo.from_db_row(dict(row)) if row else None

    @staticmethod
    @retry_on_db_lock()
    def create(
        title: str,
        notes: str | None = None,
        date_header: str | None = None,
        priority: int | None = None,
        category: str | None = None,
        staff_member: str | None = None,
        owner_user_id: str | None = None,
    ) -> Todo:
        """
        Raises:
            ValidationError: Blank title
        """
        if not title or not title.strip():
            raise ValidationError("Title is required")

        now = utcnow_iso()
        staff = staff_member or DEFAULT_STAFF_NAME
        todo = Todo(
            todo_id=str(uuid.uuid4()),
            title=title.strip(),
            notes=_clean(notes),
            date_header=normalize_date_header(date_header),
            priority=priority or 0,
            category=_clean(category),
            created_by_name=staff,
            last_edited_by_name=staff,
            owner_user_id=owner_user_id,
            created_at=now,
            updated_at=now,
        )

        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO todos (
                    todo_id, title, notes, date_header, priority, category, is_completed,
                    sort_order, completed_at, created_by_name, completed_by_name,
                    last_edited_by_name, owner_user_id, created_at, updated_at, deleted_at
                ) VALUES (
                    :todo_id, :title, :notes, :date_header, :priority, :category, :is_completed,
                    :sort_order, :completed_at, :created_by_name, :completed_by_name,
                    :last_edited_by_name, :owner_user_id, :created_at, :updated_at, :deleted_at
                )
                """,
                todo.to_dict(),
            )

        logger.info("Created todo %s", todo.todo_id)
        return todo

    @staticmethod
    @retry_on_db_lock()
    def update(todo_id: str, updates: dict[str, Any], staff_member: str | None = None) -> Todo | None:
        """
        Apply a partial update. Only keys present in ``updates`` change.

        Completing a todo stamps completed_at and completed_by_name; reopening
        clears both.
        """
        now = utcnow_iso()
        staff = staff_member or DEFAULT_STAFF_NAME
        set_values: dict[str, Any] = {}

        if "title" in updates:
            title = (updates["title"] or "").strip()
            if not title:
                raise ValidationError("Title is required")
            set_values["title"] = title
        if "notes" in updates:
            set_values["notes"] = _clean(updates["notes"])
        if "date_header" in updates:
            set_values["date_header"] = normalize_date_header(updates["date_header"])
        if "priority" in updates:
            set_values["priority"] = updates["priority"] or 0
        if "category" in updates:
            set_values["category"] = _clean(updates["category"])
        if "sort_order" in updates:
            set_values["sort_order"] = updates["sort_order"] or 0
        if "is_completed" in updates:
            completed = bool(updates["is_completed"])
            set_values["is_completed"] = 1 if completed else 0
            set_values["completed_at"] = now if completed else None
            set_values["completed_by_name"] = staff if completed else None

        set_values["last_edited_by_name"] = staff
        set_values["updated_at"] = now
        set_clause = ", ".join(f"{key} = :{key}" for key in set_values)

        with db_transaction() as conn:
            cursor = conn.execute(
                f"UPDATE todos SET {set_clause} WHERE todo_id = :todo_id AND deleted_at IS NULL",
                {**set_values, "todo_id": todo_id},
            )
            if cursor.rowcount == 0:
                return None

        return TodoRepository.get_by_id(todo_id)

    @staticmethod
    @retry_on_db_lock()
    def soft_delete(todo_id: str) -> bool:
        now = utcnow_iso()
        with db_transaction() as conn:
            cursor = conn.execute(
                "UPDATE todos SET deleted_at = ?, updated_at = ? WHERE todo_id = ? AND deleted_at IS NULL",
                (now, now, todo_id),
            )
        return cursor.rowcount > 0

    @staticmethod
    @retry_on_db_lock()
    def bulk_update(changes: list[dict[str, Any]]) -> int:
        """
        Reorder or batch-complete todos in one transaction.

        Args:
            changes: [{todo_id, sort_order?, is_completed?}, ...]

        Returns:
            Number of rows updated
        """
        if not changes:
            raise ValidationError("Todos array is required")

        now = utcnow_iso()
        updated = 0
        with db_transaction() as conn:
            for change in changes:
                set_values: dict[str, Any] = {}
                if change.get("sort_order") is not None:
                    set_values["sort_order"] = change["sort_order"]
                if change.get("is_completed") is not None:
                    completed = bool(change["is_completed"])
                    set_values["is_completed"] = 1 if completed else 0
                    set_values["completed_at"] = now if completed else None
                if not set_values:
                    continue
                set_values["updated_at"] = now
                set_clause = ", ".join(f"{key} = :{key}" for key in set_values)
                cursor = conn.execute(
                    f"UPDATE todos SET {set_clause} WHERE todo_id = :todo_id AND deleted_at IS NULL",
                    {**set_values, "todo_id": change["todo_id"]},
                )
                updated += cursor.rowcount

        logger.info("Bulk updated %d todos", updated)
        return updated
