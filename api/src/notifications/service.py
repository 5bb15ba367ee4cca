# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Notification service layer.

Business logic for:
- Creating notifications for replies, quoted replies, mentions and likes
- Maintaining per-user unread counters
- Publishing new notifications to Redis for real-time delivery
"""

import contextlib
import json
from typing import TYPE_CHECKING
from uuid import UUID

from src.core.redis import notification_channel
from src.notifications.models import (
    Notification,
    NotificationType,
    create_comment_notification,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from redis.asyncio import Redis


class NotificationService:
    """Service for notification management."""

    def __init__(self, session: "Session", keyspace: str, redis: "Redis | None" = None):
        """Initialize with Cassandra session and optional Redis."""
        self.session = session
        self.keyspace = keyspace
        self.redis = redis
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._insert_notification = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.notifications_by_user
            (user_id, notification_id, type, title, message, actor_id, actor_name,
             actor_avatar, reference_id, reference_type, reference_url, story_id,
             chapter_id, is_read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._incr_unread = self.session.prepare(f"""
            UPDATE {self.keyspace}.notification_unread_counts
            SET count = count + 1
            WHERE user_id = ?
        """)

    # ==========================================================================
    # Notification Creation
    # ==========================================================================

    async def create_notification(self, notification: Notification) -> Notification:
        """Persist a notification and push it to the user's channel."""
        await self.session.aexecute(
            self._insert_notification,
            [
                notification.user_id,
                notification.notification_id,
                notification.type.value,
                notification.title,
                notification.message,
                notification.actor_id,
                notification.actor_name,
                notification.actor_avatar,
                notification.reference_id,
                notification.reference_type,
                notification.reference_url,
                notification.story_id,
                notification.chapter_id,
                notification.is_read,
                notification.created_at,
            ],
        )

        await self.session.aexecute(self._incr_unread, [notification.user_id])

        await self._publish_notification(notification)

        return notification

    async def _publish_notification(self, notification: Notification) -> None:
        """Publish notification to Redis Pub/Sub for real-time delivery."""
        if not self.redis:
            return

        message = {"type": "notification", "data": notification.to_dict()}

        # Non-critical: don't fail notification creation if Redis publish fails
        with contextlib.suppress(Exception):
            await self.redis.publish(
                notification_channel(str(notification.user_id)), json.dumps(message)
            )

    async def _notify_about_comment(
        self,
        notification_type: NotificationType,
        title: str,
        recipient_id: UUID,
        actor_id: UUID,
        actor_name: str,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        content: str,
        actor_avatar: str | None,
    ) -> Notification | None:
        # Never notify users about their own activity
        if recipient_id == actor_id:
            return None

        notification = create_comment_notification(
            recipient_id=recipient_id,
            notification_type=notification_type,
            title=title,
            actor_id=actor_id,
            actor_name=actor_name,
            comment_id=comment_id,
            story_id=story_id,
            chapter_id=chapter_id,
            content=content,
            actor_avatar=actor_avatar,
        )
        return await self.create_notification(notification)

    async def create_comment_reply_notification(
        self,
        recipient_id: UUID,
        actor_id: UUID,
        actor_name: str,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        content: str,
        actor_avatar: str | None = None,
    ) -> Notification | None:
        """Notify a comment author that someone replied.

        Returns None if the replier is the comment author.
        """
        return await self._notify_about_comment(
            NotificationType.REPLY,
            f"{actor_name} replied to your comment",
            recipient_id,
            actor_id,
            actor_name,
            comment_id,
            story_id,
            chapter_id,
            content,
            actor_avatar,
        )

    async def create_quoted_reply_notification(
        self,
        recipient_id: UUID,
        actor_id: UUID,
        actor_name: str,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        content: str,
        actor_avatar: str | None = None,
    ) -> Notification | None:
        """Notify the author of a comment that was quoted by a deep reply."""
        return await self._notify_about_comment(
            NotificationType.QUOTED_REPLY,
            f"{actor_name} quoted your comment in a reply",
            recipient_id,
            actor_id,
            actor_name,
            comment_id,
            story_id,
            chapter_id,
            content,
            actor_avatar,
        )

    async def create_mention_notification(
        self,
        recipient_id: UUID,
        actor_id: UUID,
        actor_name: str,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        content: str,
        actor_avatar: str | None = None,
    ) -> Notification | None:
        """Notify a user mentioned with @username."""
        return await self._notify_about_comment(
            NotificationType.MENTION,
            f"{actor_name} mentioned you",
            recipient_id,
            actor_id,
            actor_name,
            comment_id,
            story_id,
            chapter_id,
            content,
            actor_avatar,
        )

    async def create_comment_like_notification(
        self,
        recipient_id: UUID,
        actor_id: UUID,
        actor_name: str,
        comment_id: UUID,
        story_id: UUID | None,
        chapter_id: UUID | None,
        actor_avatar: str | None = None,
    ) -> Notification | None:
        """Notify a comment author that someone liked the comment."""
        return await self._notify_about_comment(
            NotificationType.LIKE,
            f"{actor_name} liked your comment",
            recipient_id,
            actor_id,
            actor_name,
            comment_id,
            story_id,
            chapter_id,
            "Liked your comment",
            actor_avatar,
        )
