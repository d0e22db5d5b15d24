"""Todos - staff task list"""

from mailroom.todos.models import Todo
from mailroom.todos.repository import TodoRepository

__all__ = ["Todo", "TodoRepository"]
