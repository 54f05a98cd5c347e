"""Notification channel abstraction layer."""

from src.notifications.channels import NotificationChannel
from src.notifications.router import NotificationRouter
from src.notifications.webhook_channel import WebhookChannel

__all__ = [
    "NotificationChannel",
    "NotificationRouter",
    "WebhookChannel",
]
