"""Messaging infrastructure for the Contest Ledger service."""

from .notifications import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    NatsNotificationSink,
    NotificationSink,
    create_notification_sink,
)

__all__ = [
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "NatsNotificationSink",
    "NotificationSink",
    "create_notification_sink",
]
