# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Admin-side notifications and the moderator audit log."""

import json
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from src.notifications.models import (
    AuditLogEntry,
    Notification,
    NotificationType,
    create_comment_notification,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.notifications.service import NotificationService


logger = structlog.get_logger(__name__)


class AdminNotificationService:
    """Notices sent on behalf of moderators, and the audit trail of their actions."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        notification_service: "NotificationService",
    ):
        self.session = session
        self.keyspace = keyspace
        self.notification_service = notification_service
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._insert_log = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.moderator_audit_log
            (moderator_id, created_at, log_id, action, target_type, target_id, details)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)

        self._insert_log_by_target = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.moderator_audit_log_by_target
            (target_id, created_at, log_id, moderator_id, action, target_type, details)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)

        self._get_logs_by_target = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.moderator_audit_log_by_target
            WHERE target_id = ?
            LIMIT ?
        """)

    async def send_comment_deletion_notification(
        self,
        user_id: UUID,
        moderator_id: UUID,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        reason: str | None = None,
    ) -> Notification:
        """Tell a user that a moderator removed one of their comments."""
        notification = create_comment_notification(
            recipient_id=user_id,
            notification_type=NotificationType.COMMENT_DELETED,
            title="Your comment was removed by a moderator",
            actor_id=moderator_id,
            actor_name="Moderator",
            comment_id=comment_id,
            story_id=story_id,
            chapter_id=chapter_id,
            content=f"Reason: {reason}" if reason else "No reason was given",
        )
        return await self.notification_service.create_notification(notification)

    async def log_admin_action(
        self,
        moderator_id: UUID,
        action: str,
        target_type: str,
        target_id: UUID,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """Append an entry to the moderator audit log."""
        entry = AuditLogEntry(
            log_id=uuid4(),
            moderator_id=moderator_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details or {},
        )
        encoded = json.dumps(entry.details, default=str)

        await self.session.aexecute(
            self._insert_log,
            [
                entry.moderator_id,
                entry.created_at,
                entry.log_id,
                entry.action,
                entry.target_type,
                entry.target_id,
                encoded,
            ],
        )
        await self.session.aexecute(
            self._insert_log_by_target,
            [
                entry.target_id,
                entry.created_at,
                entry.log_id,
                entry.moderator_id,
                entry.action,
                entry.target_type,
                encoded,
            ],
        )

        logger.info(
            "admin_action_logged",
            moderator_id=str(moderator_id),
            action=action,
            target_type=target_type,
            target_id=str(target_id),
        )
        return entry

    async def get_audit_logs_for_target(
        self, target_id: UUID, limit: int = 50
    ) -> list[AuditLogEntry]:
        """Get the audit trail of a comment, newest first."""
        rows = await self.session.aexecute(self._get_logs_by_target, [target_id, limit])
        return [AuditLogEntry.from_row(row) for row in rows]
