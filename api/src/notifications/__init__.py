"""Notifications module.

Provides:
- Notifications about replies, quoted replies, mentions and likes
- Deletion notices sent by moderators
- The moderator audit log
"""

from src.notifications.admin_service import AdminNotificationService
from src.notifications.models import (
    NOTIFICATIONS_TABLES_CQL,
    AuditLogEntry,
    Notification,
    NotificationType,
)
from src.notifications.service import NotificationService


__all__ = [
    "NOTIFICATIONS_TABLES_CQL",
    "AdminNotificationService",
    "AuditLogEntry",
    "Notification",
    "NotificationService",
    "NotificationType",
]
