# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Cassandra persistence for comments.

``comments_by_id`` holds the full document. The other tables only index
comment ids, so every read goes index -> ``comments_by_id``. Engagement
changes are single-row set mutations, which Cassandra applies atomically.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.comments.models import (
    PATH_RANGE_END,
    STORY_CHAPTER_KEY,
    Comment,
    CommentStatus,
    EditHistoryEntry,
    FlagEntry,
    ReactionAction,
    ReportResolution,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = structlog.get_logger(__name__)


class CommentRepository:
    """Reads and writes comment documents and their index tables."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        ks = self.keyspace

        # Document
        self._insert_comment = self.session.prepare(f"""
            INSERT INTO {ks}.comments_by_id
            (comment_id, author_id, author_name, author_avatar, story_id, chapter_id,
             target_type, content_original, content_sanitized, mentions,
             quoted_comment_id, quoted_username, quoted_text, quoted_full_text,
             is_level_conversion, parent_id, level, root_id, path, likes, dislikes,
             reply_ids, score, status, spam_score, toxicity_score, ip_hash,
             user_agent_hash, chapter_position, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                    ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._get_comment = self.session.prepare(f"""
            SELECT * FROM {ks}.comments_by_id WHERE comment_id = ?
        """)

        self._get_comments = self.session.prepare(f"""
            SELECT * FROM {ks}.comments_by_id WHERE comment_id IN ?
        """)

        self._update_content = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET content_original = ?, content_sanitized = ?, mentions = ?,
                edit_history = edit_history + ?, updated_at = ?
            WHERE comment_id = ?
        """)

        self._delete_comment = self.session.prepare(f"""
            DELETE FROM {ks}.comments_by_id WHERE comment_id = ?
        """)

        # Engagement
        self._like = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET likes = likes + ?, dislikes = dislikes - ?
            WHERE comment_id = ?
        """)

        self._dislike = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET dislikes = dislikes + ?, likes = likes - ?
            WHERE comment_id = ?
        """)

        self._remove_reaction = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET likes = likes - ?, dislikes = dislikes - ?
            WHERE comment_id = ?
        """)

        self._register_reply = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET reply_ids = reply_ids + ?, last_reply_at = ?
            WHERE comment_id = ?
        """)

        self._update_score = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id SET score = ? WHERE comment_id = ?
        """)

        # Moderation
        self._update_status = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET status = ?, moderated_by = ?, moderated_at = ?,
                moderation_reason = ?, updated_at = ?
            WHERE comment_id = ?
        """)

        self._update_analysis = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET spam_score = ?, toxicity_score = ?, checked_at = ?
            WHERE comment_id = ?
        """)

        self._add_flag = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET flagged_by = flagged_by + ?, flag_reasons = flag_reasons + ?
            WHERE comment_id = ?
        """)

        self._update_resolution = self.session.prepare(f"""
            UPDATE {ks}.comments_by_id
            SET resolution_status = ?, resolved_by = ?, resolved_at = ?,
                resolution_reason = ?, admin_notes = ?, action_taken = ?
            WHERE comment_id = ?
        """)

        # Materialized path index
        self._insert_by_root = self.session.prepare(f"""
            INSERT INTO {ks}.comments_by_root (root_id, path, comment_id)
            VALUES (?, ?, ?)
        """)

        self._get_subtree = self.session.prepare(f"""
            SELECT comment_id FROM {ks}.comments_by_root
            WHERE root_id = ? AND path >= ? AND path < ?
        """)

        self._delete_by_root = self.session.prepare(f"""
            DELETE FROM {ks}.comments_by_root WHERE root_id = ? AND path = ?
        """)

        # Listing by story/chapter
        self._insert_by_target = self.session.prepare(f"""
            INSERT INTO {ks}.comments_by_target
            (story_id, chapter_key, is_root, created_at, comment_id)
            VALUES (?, ?, ?, ?, ?)
        """)

        self._get_by_target = self.session.prepare(f"""
            SELECT comment_id, created_at FROM {ks}.comments_by_target
            WHERE story_id = ? AND chapter_key = ? AND is_root = ?
            LIMIT ?
        """)

        self._get_by_target_before = self.session.prepare(f"""
            SELECT comment_id, created_at FROM {ks}.comments_by_target
            WHERE story_id = ? AND chapter_key = ? AND is_root = ?
            AND (created_at, comment_id) < (?, ?)
            LIMIT ?
        """)

        self._get_by_target_oldest = self.session.prepare(f"""
            SELECT comment_id, created_at FROM {ks}.comments_by_target
            WHERE story_id = ? AND chapter_key = ? AND is_root = ?
            ORDER BY created_at ASC, comment_id ASC
            LIMIT ?
        """)

        self._get_by_target_after = self.session.prepare(f"""
            SELECT comment_id, created_at FROM {ks}.comments_by_target
            WHERE story_id = ? AND chapter_key = ? AND is_root = ?
            AND (created_at, comment_id) > (?, ?)
            ORDER BY created_at ASC, comment_id ASC
            LIMIT ?
        """)

        self._delete_by_target = self.session.prepare(f"""
            DELETE FROM {ks}.comments_by_target
            WHERE story_id = ? AND chapter_key = ? AND is_root = ?
            AND created_at = ? AND comment_id = ?
        """)

        # Moderation queue
        self._insert_by_status = self.session.prepare(f"""
            INSERT INTO {ks}.comments_by_status (status, created_at, comment_id)
            VALUES (?, ?, ?)
        """)

        self._get_by_status = self.session.prepare(f"""
            SELECT comment_id FROM {ks}.comments_by_status
            WHERE status = ?
            LIMIT ?
        """)

        self._delete_by_status = self.session.prepare(f"""
            DELETE FROM {ks}.comments_by_status
            WHERE status = ? AND created_at = ? AND comment_id = ?
        """)

        # Reported comments
        self._insert_by_resolution = self.session.prepare(f"""
            INSERT INTO {ks}.comments_by_resolution (resolution_status, comment_id)
            VALUES (?, ?)
        """)

        self._get_by_resolution = self.session.prepare(f"""
            SELECT comment_id FROM {ks}.comments_by_resolution
            WHERE resolution_status = ?
            LIMIT ?
        """)

        self._delete_by_resolution = self.session.prepare(f"""
            DELETE FROM {ks}.comments_by_resolution
            WHERE resolution_status = ? AND comment_id = ?
        """)

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get(self, comment_id: UUID) -> Comment | None:
        """Get a single comment by id."""
        result = await self.session.aexecute(self._get_comment, [comment_id])
        row = result.one()
        return Comment.from_row(row) if row else None

    async def get_many(self, comment_ids: Iterable[UUID]) -> list[Comment]:
        """Get comments by id, keeping the order of ``comment_ids``."""
        ids = list(dict.fromkeys(comment_ids))
        if not ids:
            return []

        rows = await self.session.aexecute(self._get_comments, [ids])
        by_id = {row.comment_id: Comment.from_row(row) for row in rows}
        return [by_id[comment_id] for comment_id in ids if comment_id in by_id]

    def _target_query(
        self,
        key: list,
        limit: int,
        after: tuple[datetime, UUID] | None,
        oldest_first: bool,
    ) -> tuple:
        if after is None:
            statement = self._get_by_target_oldest if oldest_first else self._get_by_target
            return statement, [*key, limit]
        statement = self._get_by_target_after if oldest_first else self._get_by_target_before
        return statement, [*key, *after, limit]

    async def list_by_target(
        self,
        story_id: UUID,
        chapter_id: UUID | None,
        limit: int,
        *,
        roots_only: bool = False,
        after: tuple[datetime, UUID] | None = None,
        oldest_first: bool = False,
    ) -> list[Comment]:
        """Comments on a story (``chapter_id`` None) or chapter, newest first.

        ``after`` is the (created_at, comment_id) of the last comment already
        seen; rows resume right past it in clustering order. Replies come from
        their own partition and are merged in unless ``roots_only``.
        """
        chapter_key = str(chapter_id) if chapter_id else STORY_CHAPTER_KEY
        keyed: list[tuple[datetime, UUID]] = []
        for is_root in (True,) if roots_only else (True, False):
            statement, params = self._target_query(
                [story_id, chapter_key, is_root], limit, after, oldest_first
            )
            rows = await self.session.aexecute(statement, params)
            keyed.extend((row.created_at, row.comment_id) for row in rows)

        keyed.sort(reverse=not oldest_first)
        return await self.get_many(comment_id for _, comment_id in keyed[:limit])

    async def list_subtree(self, root_id: UUID, path_prefix: str) -> list[Comment]:
        """Every comment whose path starts with ``path_prefix``, in path order."""
        rows = await self.session.aexecute(
            self._get_subtree,
            [root_id, path_prefix, path_prefix + PATH_RANGE_END],
        )
        return await self.get_many(row.comment_id for row in rows)

    async def list_by_status(self, status: CommentStatus, limit: int) -> list[Comment]:
        """Comments in a moderation status, newest first."""
        rows = await self.session.aexecute(self._get_by_status, [status.value, limit])
        return await self.get_many(row.comment_id for row in rows)

    async def list_by_resolution(self, resolution_status: str, limit: int) -> list[Comment]:
        """Reported comments in a resolution state."""
        rows = await self.session.aexecute(
            self._get_by_resolution, [resolution_status, limit]
        )
        return await self.get_many(row.comment_id for row in rows)

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def insert(self, comment: Comment) -> None:
        """Persist a new comment and its index rows."""
        quote = comment.quote
        await self.session.aexecute(
            self._insert_comment,
            [
                comment.comment_id,
                comment.author_id,
                comment.author_name,
                comment.author_avatar,
                comment.target.story_id,
                comment.target.chapter_id,
                comment.target.type.value,
                comment.content_original,
                comment.content_sanitized,
                comment.mentions,
                quote.quoted_comment_id if quote else None,
                quote.quoted_username if quote else None,
                quote.quoted_text if quote else None,
                quote.quoted_full_text if quote else None,
                quote.is_level_conversion if quote else False,
                comment.parent_id,
                comment.level,
                comment.root_id,
                comment.path,
                comment.likes,
                comment.dislikes,
                comment.reply_ids,
                comment.score,
                comment.status.value,
                comment.spam_score,
                comment.toxicity_score,
                comment.ip_hash,
                comment.user_agent_hash,
                comment.chapter_position,
                comment.created_at,
                comment.updated_at,
            ],
        )
        await self.session.aexecute(
            self._insert_by_root, [comment.root_id, comment.path, comment.comment_id]
        )
        await self.session.aexecute(
            self._insert_by_target,
            [
                comment.target.story_id,
                comment.target.chapter_key,
                comment.is_root,
                comment.created_at,
                comment.comment_id,
            ],
        )
        await self.session.aexecute(
            self._insert_by_status,
            [comment.status.value, comment.created_at, comment.comment_id],
        )

    async def update_content(
        self,
        comment_id: UUID,
        content_original: str,
        content_sanitized: str,
        mentions: list[str],
        history_entry: EditHistoryEntry,
        updated_at: datetime,
    ) -> None:
        """Replace the content and append the previous version to the history."""
        await self.session.aexecute(
            self._update_content,
            [
                content_original,
                content_sanitized,
                mentions,
                [history_entry.to_column()],
                updated_at,
                comment_id,
            ],
        )

    async def apply_reaction(
        self, comment_id: UUID, user_id: UUID, action: ReactionAction
    ) -> None:
        """Atomically move ``user_id`` between the like and dislike sets."""
        statement = {
            ReactionAction.LIKE: self._like,
            ReactionAction.DISLIKE: self._dislike,
            ReactionAction.REMOVE: self._remove_reaction,
        }[action]
        await self.session.aexecute(statement, [{user_id}, {user_id}, comment_id])

    async def register_reply(
        self, parent_id: UUID, reply_id: UUID, replied_at: datetime
    ) -> None:
        await self.session.aexecute(
            self._register_reply, [{reply_id}, replied_at, parent_id]
        )

    async def update_score(self, comment_id: UUID, score: float) -> None:
        await self.session.aexecute(self._update_score, [score, comment_id])

    async def update_status(
        self,
        comment: Comment,
        status: CommentStatus,
        moderated_by: UUID | None,
        moderated_at: datetime,
        reason: str | None,
    ) -> None:
        """Change the status and move the comment between status partitions."""
        await self.session.aexecute(
            self._update_status,
            [
                status.value,
                moderated_by,
                moderated_at,
                reason,
                moderated_at,
                comment.comment_id,
            ],
        )
        if status != comment.status:
            await self.session.aexecute(
                self._delete_by_status,
                [comment.status.value, comment.created_at, comment.comment_id],
            )
            await self.session.aexecute(
                self._insert_by_status,
                [status.value, comment.created_at, comment.comment_id],
            )

    async def save_analysis(
        self,
        comment_id: UUID,
        spam_score: float,
        toxicity_score: float,
        checked_at: datetime,
    ) -> None:
        await self.session.aexecute(
            self._update_analysis,
            [spam_score, toxicity_score, checked_at, comment_id],
        )

    async def add_flag(self, comment_id: UUID, flag: FlagEntry) -> None:
        """Record a report. The map is keyed by reporter, one entry per user."""
        await self.session.aexecute(
            self._add_flag,
            [{flag.user_id: flag.to_column()}, {flag.reason}, comment_id],
        )

    async def update_resolution(
        self, comment: Comment, resolution: ReportResolution
    ) -> None:
        """Store a report resolution and move the comment between report queues."""
        new_status = resolution.status.value if resolution.status else None
        await self.session.aexecute(
            self._update_resolution,
            [
                new_status,
                resolution.resolved_by,
                resolution.resolved_at,
                resolution.reason,
                resolution.admin_notes,
                resolution.action_taken,
                comment.comment_id,
            ],
        )

        old_status = comment.resolution.status.value if comment.resolution.status else None
        if old_status == new_status:
            return
        if old_status:
            await self.session.aexecute(
                self._delete_by_resolution, [old_status, comment.comment_id]
            )
        if new_status:
            await self.session.aexecute(
                self._insert_by_resolution, [new_status, comment.comment_id]
            )

    async def delete(self, comment: Comment) -> None:
        """Physically remove a comment from every table."""
        await self.session.aexecute(
            self._delete_by_root, [comment.root_id, comment.path]
        )
        await self.session.aexecute(
            self._delete_by_target,
            [
                comment.target.story_id,
                comment.target.chapter_key,
                comment.is_root,
                comment.created_at,
                comment.comment_id,
            ],
        )
        await self.session.aexecute(
            self._delete_by_status,
            [comment.status.value, comment.created_at, comment.comment_id],
        )
        if comment.resolution.status:
            await self.session.aexecute(
                self._delete_by_resolution,
                [comment.resolution.status.value, comment.comment_id],
            )
        await self.session.aexecute(self._delete_comment, [comment.comment_id])

        logger.info("comment_hard_deleted", comment_id=str(comment.comment_id))
