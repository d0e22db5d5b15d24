"""Notifications - customer notification history and message templates"""

from mailroom.notifications.repository import MessageTemplateRepository, NotificationRepository
from mailroom.notifications.service import NotificationService
from mailroom.notifications.templates import render_template

__all__ = [
    "MessageTemplateRepository",
    "NotificationRepository",
    "NotificationService",
    "render_template",
]
