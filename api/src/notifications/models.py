"""Database models for notifications and the moderator audit log.

Cassandra table definitions for:
- Notifications by user: notifications about comment activity
- Unread counts: counter per user
- Moderator audit log: every admin action, by moderator and by target

Notification types:
- REPLY: Someone replied to the user's comment
- QUOTED_REPLY: A deep reply quoting the user's comment was posted
- MENTION: User was mentioned with @username in a comment
- LIKE: Someone liked the user's comment
- COMMENT_DELETED: An admin removed the user's comment
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


# ==============================================================================
# Constants
# ==============================================================================

NOTIFICATION_PREVIEW_MAX_LENGTH = 200


class NotificationType(str, Enum):
    """Types of notifications."""

    REPLY = "reply"
    QUOTED_REPLY = "quoted_reply"
    MENTION = "mention"
    LIKE = "like"
    COMMENT_DELETED = "comment_deleted"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

NOTIFICATIONS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.notifications_by_user (
    user_id UUID,
    notification_id UUID,
    type TEXT,
    title TEXT,
    message TEXT,
    actor_id UUID,
    actor_name TEXT,
    actor_avatar TEXT,
    reference_id UUID,
    reference_type TEXT,
    reference_url TEXT,
    story_id UUID,
    chapter_id UUID,
    is_read BOOLEAN,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id), created_at, notification_id)
) WITH CLUSTERING ORDER BY (created_at DESC, notification_id ASC)
"""

UNREAD_COUNT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.notification_unread_counts (
    user_id UUID PRIMARY KEY,
    count COUNTER
)
"""

MODERATOR_AUDIT_LOG_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.moderator_audit_log (
    moderator_id UUID,
    created_at TIMESTAMP,
    log_id UUID,
    action TEXT,
    target_type TEXT,
    target_id UUID,
    details TEXT,
    PRIMARY KEY ((moderator_id), created_at, log_id)
) WITH CLUSTERING ORDER BY (created_at DESC, log_id ASC)
"""

MODERATOR_AUDIT_LOG_BY_TARGET_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.moderator_audit_log_by_target (
    target_id UUID,
    created_at TIMESTAMP,
    log_id UUID,
    moderator_id UUID,
    action TEXT,
    target_type TEXT,
    details TEXT,
    PRIMARY KEY ((target_id), created_at, log_id)
) WITH CLUSTERING ORDER BY (created_at DESC, log_id ASC)
"""

NOTIFICATIONS_TABLES_CQL = [
    NOTIFICATIONS_BY_USER_TABLE_CQL,
    UNREAD_COUNT_TABLE_CQL,
    MODERATOR_AUDIT_LOG_TABLE_CQL,
    MODERATOR_AUDIT_LOG_BY_TARGET_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Notification:
    """Notification entity with full details."""

    notification_id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    actor_id: UUID | None
    actor_name: str | None
    actor_avatar: str | None
    reference_id: UUID | None
    reference_type: str | None
    reference_url: str | None
    story_id: UUID | None
    chapter_id: UUID | None
    is_read: bool
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "notification_id": str(self.notification_id),
            "user_id": str(self.user_id),
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "actor_name": self.actor_name,
            "actor_avatar": self.actor_avatar,
            "reference_id": str(self.reference_id) if self.reference_id else None,
            "reference_type": self.reference_type,
            "reference_url": self.reference_url,
            "story_id": str(self.story_id) if self.story_id else None,
            "chapter_id": str(self.chapter_id) if self.chapter_id else None,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AuditLogEntry:
    """A single moderator action."""

    log_id: UUID
    moderator_id: UUID
    action: str
    target_type: str
    target_id: UUID
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_row(cls, row: Any) -> "AuditLogEntry":
        """Create AuditLogEntry from Cassandra row."""
        return cls(
            log_id=row.log_id,
            moderator_id=row.moderator_id,
            action=row.action,
            target_type=row.target_type,
            target_id=row.target_id,
            details=json.loads(row.details) if row.details else {},
            created_at=row.created_at,
        )


# ==============================================================================
# Factory Functions
# ==============================================================================


def comment_url(comment_id: UUID, story_id: UUID | None, chapter_id: UUID | None) -> str:
    """Build the reader-facing link to a comment."""
    if story_id and chapter_id:
        return f"/stories/{story_id}/chapters/{chapter_id}#comment-{comment_id}"
    if story_id:
        return f"/stories/{story_id}#comment-{comment_id}"
    return f"#comment-{comment_id}"


def preview(text: str) -> str:
    """Shorten comment text for a notification body."""
    if len(text) > NOTIFICATION_PREVIEW_MAX_LENGTH:
        return text[:NOTIFICATION_PREVIEW_MAX_LENGTH]
    return text


def create_notification(
    user_id: UUID,
    notification_type: NotificationType,
    title: str,
    message: str,
    actor_id: UUID | None = None,
    actor_name: str | None = None,
    actor_avatar: str | None = None,
    reference_id: UUID | None = None,
    reference_type: str | None = None,
    reference_url: str | None = None,
    story_id: UUID | None = None,
    chapter_id: UUID | None = None,
) -> Notification:
    """Create a new notification with default values."""
    return Notification(
        notification_id=uuid4(),
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        actor_id=actor_id,
        actor_name=actor_name,
        actor_avatar=actor_avatar,
        reference_id=reference_id,
        reference_type=reference_type,
        reference_url=reference_url,
        story_id=story_id,
        chapter_id=chapter_id,
        is_read=False,
        created_at=datetime.now(UTC),
    )


def create_comment_notification(
    recipient_id: UUID,
    notification_type: NotificationType,
    title: str,
    actor_id: UUID,
    actor_name: str,
    comment_id: UUID,
    story_id: UUID | None,
    chapter_id: UUID | None,
    content: str,
    actor_avatar: str | None = None,
) -> Notification:
    """Create a notification that points at a comment."""
    return create_notification(
        user_id=recipient_id,
        notification_type=notification_type,
        title=title,
        message=preview(content),
        actor_id=actor_id,
        actor_name=actor_name,
        actor_avatar=actor_avatar,
        reference_id=comment_id,
        reference_type="comment",
        reference_url=comment_url(comment_id, story_id, chapter_id),
        story_id=story_id,
        chapter_id=chapter_id,
    )
