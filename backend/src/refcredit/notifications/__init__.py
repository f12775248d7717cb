"""Outbound notifications (email)."""

from refcredit.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationKind,
    Recipient,
    notification_dispatcher,
)
from refcredit.notifications.email import EmailService, email_service

__all__ = [
    "EmailService",
    "NotificationDispatcher",
    "NotificationKind",
    "Recipient",
    "email_service",
    "notification_dispatcher",
]
