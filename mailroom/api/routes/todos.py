"""Staff todo list API endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from mailroom.api.middleware.user_auth import AuthenticatedUser, get_current_user
from mailroom.api.models import TodoBulkUpdate, TodoCreate, TodoUpdate
from mailroom.observability.logging import get_logger
from mailroom.todos import TodoRepository
from mailroom.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/todos", tags=["todos"])
logger = get_logger(__name__)


@router.get("")
async def list_todos(
    date: str | None = Query(None, max_length=40),
    completed: bool | None = None,
    category: str | None = Query(None, max_length=50),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[dict[str, Any]]:
    try:
        return [todo.to_dict() for todo in TodoRepository.list_todos(date, completed, category)]
    except Exception as e:
        logger.error("Failed to list todos: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch todos") from None


@router.post("", status_code=201)
async def create_todo(
    request: TodoCreate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        todo = TodoRepository.create(
            title=request.title,
            notes=request.notes,
            date_header=request.date_header,
            priority=request.priority,
            category=request.category,
            staff_member=request.staff_member,
            owner_user_id=user.id,
        )
        return todo.to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to create todo: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create todo") from None


# Registered before /{todo_id} so "bulk" is not taken for an id
@router.put("/bulk")
async def bulk_update_todos(
    request: TodoBulkUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        updated = TodoRepository.bulk_update([change.model_dump() for change in request.todos])
        return {"success": True, "updated": updated}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to bulk update todos: %s", e)
        raise HTTPException(status_code=500, detail="Failed to update todos") from None


@router.put("/{todo_id}")
async def update_todo(
    todo_id: str,
    request: TodoUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    updates = request.model_dump(exclude_unset=True, exclude={"staff_member"})
    try:
        todo = TodoRepository.update(todo_id, updates, staff_member=request.staff_member)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except Exception as e:
        logger.error("Failed to update todo %s: %s", todo_id, e)
        raise HTTPException(status_code=500, detail="Failed to update todo") from None

    if todo is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo.to_dict()


@router.delete("/{todo_id}")
async def delete_todo(
    todo_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        deleted = TodoRepository.soft_delete(todo_id)
    except Exception as e:
        logger.error("Failed to delete todo %s: %s", todo_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete todo") from None

    if not deleted:
        raise HTTPException(status_code=404, detail="Todo not found")
    return {"success": True, "todo_id": todo_id}
