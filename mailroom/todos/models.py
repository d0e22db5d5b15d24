"""Todo domain model."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


def normalize_date_header(value: str | None) -> str | None:
    """Keep only the YYYY-MM-DD part of a date header."""
    if not value:
        return None
    return value.split("T")[0]


@dataclass
class Todo:
    todo_id: str
    title: str
    notes: str | None = None
    date_header: str | None = None
    priority: int = 0
    category: str | None = None
    is_completed: bool = False
    sort_order: int = 0
    completed_at: str | None = None
    created_by_name: str | None = None
    completed_by_name: str | None = None
    last_edited_by_name: str | None = None
    owner_user_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Todo:
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in row.items() if key in known}
        values["is_completed"] = bool(values.get("is_completed"))
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
