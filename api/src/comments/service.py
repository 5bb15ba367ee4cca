"""Comment service layer.

Business logic for:
- Creating comments (hierarchy placement, quote conversion, sanitization)
- Editing and soft-deleting comments
- Reactions with atomic like/dislike exclusivity and score recomputation
- Flagging (delegated to the moderation engine)
- Listing, single comment and thread views with viewer enrichment
- Reply counts aggregated from the materialized path
- Comment statistics

Collaborator calls (counters, notifications, cache) are best-effort: they are
awaited through ``run_side_effect`` and never fail the primary operation.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from src.comments.exceptions import (
    AlreadyRemovedError,
    CommentNotActiveError,
    CommentNotFoundError,
    ContentTooLongError,
    DeleteNotAllowedError,
    InvalidActionError,
    InvalidCursorError,
    InvalidTargetError,
    NotOwnerOrExpiredError,
)
from src.comments.guards import check_content
from src.comments.models import (
    Comment,
    CommentStatus,
    CommentTarget,
    EditHistoryEntry,
    QuoteData,
    ReactionAction,
    TargetType,
    create_comment,
)
from src.comments.sanitizer import extract_mentions
from src.comments.schemas import decode_cursor, encode_cursor
from src.comments.scoring import ScoringWeights, score_comment
from src.core.effects import SideEffectResult, failed_effects, run_side_effect
from src.core.hashing import hash_identifier


if TYPE_CHECKING:
    from src.comments.cache import CommentCache
    from src.comments.hierarchy import HierarchyEngine
    from src.comments.moderation import ModerationEngine
    from src.comments.repository import CommentRepository
    from src.comments.sanitizer import ContentSanitizer
    from src.config.settings import Settings
    from src.notifications.admin_service import AdminNotificationService
    from src.notifications.service import NotificationService
    from src.stories.service import ChapterStore, StoryStore
    from src.users.models import UserProfile
    from src.users.service import UserStore


logger = structlog.get_logger(__name__)

REMOVED_STATUSES = frozenset(
    {CommentStatus.DELETED, CommentStatus.HIDDEN, CommentStatus.SPAM}
)
SORTS = ("newest", "oldest", "popular")
STATS_RANGES = {"1d": timedelta(days=1), "7d": timedelta(days=7), "30d": timedelta(days=30)}


# ==============================================================================
# Policy and results
# ==============================================================================


@dataclass(frozen=True)
class CommentPolicy:
    """Limits applied by the comment service."""

    max_length: int = 2000
    edit_window_hours: int = 24
    hash_salt: str = ""
    scan_limit: int = 500

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CommentPolicy":
        return cls(
            max_length=settings.comment_max_length,
            edit_window_hours=settings.comment_edit_window_hours,
            hash_salt=settings.comment_hash_salt,
            scan_limit=settings.comment_list_scan_limit,
        )


@dataclass(frozen=True)
class Viewer:
    """The user a response is rendered for."""

    user_id: UUID
    is_admin: bool = False


@dataclass
class CommentCreation:
    comment: Comment
    quote: QuoteData | None = None
    converted: bool = False
    side_effects: list[SideEffectResult] = field(default_factory=list)

    @property
    def failed_side_effects(self) -> list[str]:
        return failed_effects(self.side_effects)


@dataclass
class CommentDeletion:
    comment: Comment
    side_effects: list[SideEffectResult] = field(default_factory=list)

    @property
    def failed_side_effects(self) -> list[str]:
        return failed_effects(self.side_effects)


@dataclass
class CommentView:
    """A comment enriched for a viewer."""

    comment: Comment
    reply_count: int = 0
    can_edit: bool = False
    can_delete: bool = False
    user_reaction: ReactionAction | None = None
    replies: list["CommentView"] = field(default_factory=list)


@dataclass
class CommentPage:
    items: list[CommentView]
    total: int | None
    limit: int
    has_more: bool = False
    next_cursor: str | None = None
    page: int | None = None


# ==============================================================================
# Permission helpers
# ==============================================================================


def can_edit(
    comment: Comment,
    user_id: UUID | None,
    edit_window_hours: int = 24,
    now: datetime | None = None,
) -> bool:
    """Only the author may edit an active comment, inside the edit window."""
    if user_id is None or comment.author_id != user_id:
        return False
    if comment.status != CommentStatus.ACTIVE:
        return False
    if edit_window_hours <= 0:
        return True
    now = now or datetime.now(UTC)
    return now - comment.created_at <= timedelta(hours=edit_window_hours)


def can_delete(comment: Comment, user_id: UUID | None, is_admin: bool = False) -> bool:
    """The author or an admin may delete a comment that is not already removed."""
    if user_id is None or comment.status in REMOVED_STATUSES:
        return False
    return is_admin or comment.author_id == user_id


def validate_target(target: CommentTarget) -> None:
    """A chapter id is required for chapter comments and forbidden otherwise."""
    if target.story_id is None:
        raise InvalidTargetError("A story is required")
    if target.type == TargetType.CHAPTER and target.chapter_id is None:
        raise InvalidTargetError("A chapter is required for chapter comments")
    if target.type == TargetType.STORY and target.chapter_id is not None:
        raise InvalidTargetError("Story comments cannot reference a chapter")


def _sort_key(comment: Comment, sort: str) -> list[Any]:
    if sort == "popular":
        return [comment.score, comment.created_at.timestamp(), str(comment.comment_id)]
    return [comment.created_at.timestamp(), str(comment.comment_id)]


# ==============================================================================
# Comment Service
# ==============================================================================


class CommentService:
    """Orchestrates comment operations over the engines and collaborators."""

    def __init__(
        self,
        repository: "CommentRepository",
        hierarchy: "HierarchyEngine",
        sanitizer: "ContentSanitizer",
        moderation: "ModerationEngine",
        cache: "CommentCache",
        user_store: "UserStore",
        story_store: "StoryStore",
        chapter_store: "ChapterStore",
        notifications: "NotificationService",
        admin_notifications: "AdminNotificationService",
        weights: ScoringWeights | None = None,
        policy: CommentPolicy | None = None,
    ):
        self.repository = repository
        self.hierarchy = hierarchy
        self.converter = hierarchy.converter
        self.sanitizer = sanitizer
        self.moderation = moderation
        self.cache = cache
        self.user_store = user_store
        self.story_store = story_store
        self.chapter_store = chapter_store
        self.notifications = notifications
        self.admin_notifications = admin_notifications
        self.weights = weights or ScoringWeights()
        self.policy = policy or CommentPolicy()

    async def _get_comment(self, comment_id: UUID) -> Comment:
        comment = await self.repository.get(comment_id)
        if comment is None:
            raise CommentNotFoundError
        return comment

    # ==========================================================================
    # Create
    # ==========================================================================

    async def create_comment(
        self,
        author_id: UUID,
        author_name: str,
        content: str,
        target: CommentTarget,
        parent_id: UUID | None = None,
        author_avatar: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        chapter_position: int | None = None,
    ) -> CommentCreation:
        """Create a comment or reply.

        Replies that would be nested deeper than level 2 are re-parented to the
        nearest level 1 ancestor and prefixed with a quote of the comment being
        answered.

        Raises:
            InvalidTargetError: Bad story/chapter combination, or a reply to a
                comment on another target.
            ContentTooLongError: Content over the length limit, counting the
                quote a converted reply gains.
            ParentNotFoundError: ``parent_id`` does not exist.
        """
        validate_target(target)
        text = check_content(content, self.policy.max_length)

        comment_id = uuid4()
        placement = await self.hierarchy.place(comment_id, parent_id, self.repository.get)
        if placement.parent is not None and (
            placement.parent.target.story_id != target.story_id
            or placement.parent.target.chapter_id != target.chapter_id
        ):
            raise InvalidTargetError("A reply must be posted on its parent's story or chapter")

        quote = None
        rendered = text
        if placement.converted and placement.replied_to is not None:
            quoted_author = await self._get_profile(placement.replied_to.author_id)
            quote = self.converter.build_quote(placement.replied_to, quoted_author)
            rendered = self.converter.format_with_quote(quote, text)
            if len(rendered) > self.policy.max_length:
                raise ContentTooLongError(self.policy.max_length)

        sanitized = self.sanitizer.sanitize(rendered)

        comment = create_comment(
            comment_id=comment_id,
            author_id=author_id,
            author_name=author_name,
            author_avatar=author_avatar,
            target=target,
            content_original=rendered,
            content_sanitized=sanitized.sanitized,
            mentions=extract_mentions(text),
            quote=quote,
            parent_id=placement.parent_id,
            level=placement.level,
            root_id=placement.root_id,
            path=placement.path,
            ip_hash=hash_identifier(ip_address, self.policy.hash_salt),
            user_agent_hash=hash_identifier(user_agent, self.policy.hash_salt),
            chapter_position=chapter_position,
        )
        comment.score = score_comment(comment, self.weights)
        await self.repository.insert(comment)

        side_effects = [
            await run_side_effect(
                "moderation_analysis",
                self.moderation.analyze_comment(comment),
                comment_id=str(comment_id),
            )
        ]
        side_effects.extend(await self._after_create(comment, placement.parent, placement.replied_to))

        logger.info(
            "comment_created",
            comment_id=str(comment_id),
            author_id=str(author_id),
            story_id=str(target.story_id),
            level=comment.level,
            converted=placement.converted,
            status=comment.status.value,
            failed_side_effects=failed_effects(side_effects) or None,
        )
        return CommentCreation(
            comment=comment,
            quote=quote,
            converted=placement.converted,
            side_effects=side_effects,
        )

    async def _get_profile(self, user_id: UUID) -> "UserProfile | None":
        try:
            return await self.user_store.get_user(user_id)
        except Exception as e:
            logger.warning("user_profile_lookup_failed", user_id=str(user_id), error=str(e))
            return None

    async def _after_create(
        self,
        comment: Comment,
        parent: Comment | None,
        replied_to: Comment | None,
    ) -> list[SideEffectResult]:
        context = {"comment_id": str(comment.comment_id)}
        target = comment.target
        results: list[SideEffectResult] = []

        if parent is not None:
            results.append(
                await run_side_effect(
                    "parent_reply_registration",
                    self._register_reply(parent.comment_id, comment),
                    **context,
                )
            )

        results.append(
            await run_side_effect(
                "user_comment_count",
                self.user_store.increment_comment_count(comment.author_id, 1),
                **context,
            )
        )
        results.append(
            await run_side_effect(
                "story_comment_count",
                self.story_store.increment_comment_count(target.story_id, 1),
                **context,
            )
        )
        if target.chapter_id:
            results.append(
                await run_side_effect(
                    "chapter_comment_count",
                    self.chapter_store.increment_comment_count(target.chapter_id, 1),
                    **context,
                )
            )

        if comment.mentions:
            results.append(
                await run_side_effect(
                    "mention_notifications", self._notify_mentions(comment), **context
                )
            )

        if parent is not None and parent.author_id != comment.author_id:
            results.append(
                await run_side_effect(
                    "reply_notification",
                    self.notifications.create_comment_reply_notification(
                        **self._notification_args(comment, parent.author_id)
                    ),
                    **context,
                )
            )

        if (
            comment.quote is not None
            and replied_to is not None
            and replied_to.author_id != comment.author_id
        ):
            results.append(
                await run_side_effect(
                    "quoted_reply_notification",
                    self.notifications.create_quoted_reply_notification(
                        **self._notification_args(comment, replied_to.author_id)
                    ),
                    **context,
                )
            )

        results.append(
            await run_side_effect(
                "cache_invalidation", self.cache.invalidate_comment(comment), **context
            )
        )
        return results

    def _notification_args(self, comment: Comment, recipient_id: UUID) -> dict[str, Any]:
        return {
            "recipient_id": recipient_id,
            "actor_id": comment.author_id,
            "actor_name": comment.author_name,
            "comment_id": comment.comment_id,
            "story_id": comment.target.story_id,
            "chapter_id": comment.target.chapter_id,
            "content": comment.content_original,
            "actor_avatar": comment.author_avatar,
        }

    async def _register_reply(self, parent_id: UUID, reply: Comment) -> None:
        await self.repository.register_reply(parent_id, reply.comment_id, reply.created_at)
        await self._rescore(parent_id)

    async def _rescore(self, comment_id: UUID) -> Comment | None:
        comment = await self.repository.get(comment_id)
        if comment is None:
            return None
        comment.score = score_comment(comment, self.weights)
        await self.repository.update_score(comment_id, comment.score)
        return comment

    async def _notify_mentions(self, comment: Comment) -> None:
        profiles = await self.user_store.get_users_by_usernames(comment.mentions)
        for profile in profiles:
            if profile.user_id == comment.author_id:
                continue
            await self.notifications.create_mention_notification(
                **self._notification_args(comment, profile.user_id)
            )

    # ==========================================================================
    # Update
    # ==========================================================================

    def can_edit(self, comment: Comment, user_id: UUID | None) -> bool:
        return can_edit(comment, user_id, self.policy.edit_window_hours)

    async def update_comment(
        self,
        comment_id: UUID,
        user_id: UUID,
        content: str,
        edit_reason: str | None = None,
    ) -> Comment:
        """Edit a comment's content, keeping the previous version in its history.

        Raises:
            CommentNotFoundError: No such comment.
            NotOwnerOrExpiredError: Not the author, not active, or too late.
            ContentTooLongError: Content over the length limit, counting the
                quote of a converted reply.
        """
        comment = await self._get_comment(comment_id)
        if not self.can_edit(comment, user_id):
            raise NotOwnerOrExpiredError

        text = check_content(content, self.policy.max_length)
        rendered = (
            self.converter.format_with_quote(comment.quote, text) if comment.quote else text
        )
        if len(rendered) > self.policy.max_length:
            raise ContentTooLongError(self.policy.max_length)
        sanitized = self.sanitizer.sanitize(rendered)
        mentions = extract_mentions(text)

        now = datetime.now(UTC)
        entry = EditHistoryEntry(
            content=comment.content_original, edited_at=now, edit_reason=edit_reason
        )
        await self.repository.update_content(
            comment_id, rendered, sanitized.sanitized, mentions, entry, now
        )

        comment.content_original = rendered
        comment.content_sanitized = sanitized.sanitized
        comment.mentions = mentions
        comment.edit_history.append(entry)
        comment.updated_at = now

        await run_side_effect(
            "cache_invalidation",
            self.cache.invalidate_comment(comment),
            comment_id=str(comment_id),
        )
        logger.info("comment_updated", comment_id=str(comment_id), edits=len(comment.edit_history))
        return comment

    # ==========================================================================
    # Delete
    # ==========================================================================

    async def delete_comment(
        self,
        comment_id: UUID,
        user_id: UUID,
        reason: str | None = None,
        is_admin: bool = False,
    ) -> CommentDeletion:
        """Soft-delete a comment. Replies stay stored but drop out of thread views.

        Raises:
            CommentNotFoundError: No such comment.
            DeleteNotAllowedError: Neither the author nor an admin.
            AlreadyRemovedError: The comment is already deleted, hidden or spam.
        """
        comment = await self._get_comment(comment_id)
        is_owner = comment.author_id == user_id
        if not (is_owner or is_admin):
            raise DeleteNotAllowedError
        if comment.status in REMOVED_STATUSES:
            raise AlreadyRemovedError

        by_admin = is_admin and not is_owner
        await self.moderation.transition(
            comment,
            CommentStatus.DELETED,
            moderator_id=user_id,
            reason=reason or ("Deleted by admin" if by_admin else "Deleted by author"),
            manual=by_admin,
        )

        context = {"comment_id": str(comment_id)}
        target = comment.target
        side_effects = [
            await run_side_effect(
                "user_comment_count",
                self.user_store.increment_comment_count(comment.author_id, -1),
                **context,
            ),
            await run_side_effect(
                "story_comment_count",
                self.story_store.increment_comment_count(target.story_id, -1),
                **context,
            ),
        ]
        if target.chapter_id:
            side_effects.append(
                await run_side_effect(
                    "chapter_comment_count",
                    self.chapter_store.increment_comment_count(target.chapter_id, -1),
                    **context,
                )
            )

        if by_admin:
            side_effects.append(
                await run_side_effect(
                    "deletion_notification",
                    self.admin_notifications.send_comment_deletion_notification(
                        user_id=comment.author_id,
                        moderator_id=user_id,
                        comment_id=comment_id,
                        story_id=target.story_id,
                        chapter_id=target.chapter_id,
                        reason=reason,
                    ),
                    **context,
                )
            )
            side_effects.append(
                await run_side_effect(
                    "audit_log",
                    self.admin_notifications.log_admin_action(
                        moderator_id=user_id,
                        action="delete_comment",
                        target_type="comment",
                        target_id=comment_id,
                        details={"snapshot": comment.audit_snapshot(), "reason": reason},
                    ),
                    **context,
                )
            )

        side_effects.append(
            await run_side_effect(
                "cache_invalidation", self.cache.invalidate_comment(comment), **context
            )
        )

        logger.info(
            "comment_deleted",
            comment_id=str(comment_id),
            by_admin=by_admin,
            failed_side_effects=failed_effects(side_effects) or None,
        )
        return CommentDeletion(comment=comment, side_effects=side_effects)

    # ==========================================================================
    # Reactions and flags
    # ==========================================================================

    async def toggle_reaction(
        self,
        comment_id: UUID,
        user_id: UUID,
        action: str | ReactionAction,
        actor_name: str | None = None,
    ) -> Comment:
        """Like, dislike or clear a reaction; the two sets stay exclusive.

        Liking is idempotent: liking twice keeps a single like.

        Raises:
            InvalidActionError: Unknown action.
            CommentNotFoundError: No such comment.
            CommentNotActiveError: The comment is not active.
        """
        try:
            reaction = ReactionAction(action)
        except ValueError as e:
            raise InvalidActionError(str(action)) from e

        comment = await self._get_comment(comment_id)
        if not comment.is_active:
            raise CommentNotActiveError

        previous = comment.reaction_of(user_id)
        await self.repository.apply_reaction(comment_id, user_id, reaction)

        updated = await self._rescore(comment_id) or comment
        context = {"comment_id": str(comment_id)}

        if (
            reaction == ReactionAction.LIKE
            and previous != ReactionAction.LIKE
            and comment.author_id != user_id
        ):
            await run_side_effect(
                "like_notification",
                self.notifications.create_comment_like_notification(
                    recipient_id=comment.author_id,
                    actor_id=user_id,
                    actor_name=actor_name or "Someone",
                    comment_id=comment_id,
                    story_id=comment.target.story_id,
                    chapter_id=comment.target.chapter_id,
                ),
                **context,
            )
        await run_side_effect(
            "cache_invalidation", self.cache.invalidate_comment(updated), **context
        )

        logger.info(
            "comment_reaction_changed",
            comment_id=str(comment_id),
            action=reaction.value,
            likes=updated.like_count,
            dislikes=updated.dislike_count,
        )
        return updated

    async def flag_comment(
        self,
        comment_id: UUID,
        user_id: UUID,
        reason: str,
        description: str | None = None,
    ) -> Comment:
        """Report a comment. Authors cannot report their own comments."""
        comment = await self.moderation.add_flag(comment_id, user_id, reason, description)
        await run_side_effect(
            "cache_invalidation",
            self.cache.invalidate_comment(comment),
            comment_id=str(comment_id),
        )
        return comment

    # ==========================================================================
    # Reads
    # ==========================================================================

    def view(
        self,
        comment: Comment,
        reply_count: int,
        viewer: Viewer | None,
    ) -> CommentView:
        user_id = viewer.user_id if viewer else None
        return CommentView(
            comment=comment,
            reply_count=reply_count,
            can_edit=self.can_edit(comment, user_id),
            can_delete=can_delete(comment, user_id, viewer.is_admin if viewer else False),
            user_reaction=comment.reaction_of(user_id),
        )

    @staticmethod
    def _count_replies(comment: Comment, subtree: list[Comment]) -> int:
        return sum(
            1
            for other in subtree
            if other.comment_id != comment.comment_id
            and other.is_active
            and other.level > comment.level
            and other.path.startswith(comment.path)
        )

    async def add_reply_counts_to_comments(
        self, comments: list[Comment]
    ) -> dict[UUID, int]:
        """Count active descendants of each comment from the path index.

        This aggregation is the only reply count shown to users; one subtree
        query is made per distinct root.
        """
        subtrees: dict[UUID, list[Comment]] = {}
        for root_id in dict.fromkeys(comment.root_id for comment in comments):
            subtrees[root_id] = await self.repository.list_subtree(root_id, f"/{root_id}/")

        return {
            comment.comment_id: self._count_replies(comment, subtrees[comment.root_id])
            for comment in comments
        }

    async def get_comment(self, comment_id: UUID, viewer: Viewer | None = None) -> CommentView:
        """Get one comment. Non-active comments are visible to admins only."""
        comment = await self._get_comment(comment_id)
        if not comment.is_active and not (viewer and viewer.is_admin):
            raise CommentNotFoundError

        counts = await self.add_reply_counts_to_comments([comment])
        return self.view(comment, counts[comment_id], viewer)

    @staticmethod
    def _cursor_key(cursor: str, sort: str) -> list[Any]:
        decoded = decode_cursor(cursor)
        key = decoded.get("key")
        if decoded.get("sort") != sort or not isinstance(key, list):
            raise InvalidCursorError
        return key

    def _page_in_memory(
        self,
        candidates: list[Comment],
        sort: str,
        cursor: str | None,
        page: int | None,
        limit: int,
    ) -> tuple[list[Comment], int, bool]:
        ordered = sorted(
            (c for c in candidates if c.is_active),
            key=lambda c: _sort_key(c, sort),
            reverse=sort != "oldest",
        )
        total = len(ordered)

        if cursor:
            after = self._cursor_key(cursor, sort)
            if sort == "oldest":
                ordered = [c for c in ordered if _sort_key(c, sort) > after]
            else:
                ordered = [c for c in ordered if _sort_key(c, sort) < after]
        elif page and page > 1:
            ordered = ordered[(page - 1) * limit :]

        return ordered[:limit], total, len(ordered) > limit

    async def _page_by_index(
        self,
        story_id: UUID,
        chapter_id: UUID | None,
        roots_only: bool,
        sort: str,
        cursor: str | None,
        page: int | None,
        limit: int,
    ) -> tuple[list[Comment], bool]:
        """Walk the target index in clustering order, skipping inactive comments.

        Reads scan_limit rows at a time and resumes each read from the last
        row seen, so no comment is lost however many replies or hidden
        comments sit in front of it.
        """
        after: tuple[datetime, UUID] | None = None
        if cursor:
            key = self._cursor_key(cursor, sort)
            try:
                after = (datetime.fromtimestamp(key[0], UTC), UUID(key[1]))
            except (IndexError, TypeError, ValueError) as exc:
                raise InvalidCursorError from exc

        skip = (page - 1) * limit if page and page > 1 and not cursor else 0
        found: list[Comment] = []
        while len(found) <= skip + limit:
            batch = await self.repository.list_by_target(
                story_id,
                chapter_id,
                self.policy.scan_limit,
                roots_only=roots_only,
                after=after,
                oldest_first=sort == "oldest",
            )
            found.extend(c for c in batch if c.is_active)
            if len(batch) < self.policy.scan_limit:
                break
            after = (batch[-1].created_at, batch[-1].comment_id)

        ordered = found[skip:]
        return ordered[:limit], len(ordered) > limit

    async def list_comments(
        self,
        story_id: UUID,
        chapter_id: UUID | None = None,
        parent_id: UUID | None = None,
        cursor: str | None = None,
        page: int | None = None,
        limit: int = 20,
        sort: str = "newest",
        include_replies: bool = False,
        viewer: Viewer | None = None,
    ) -> CommentPage:
        """List active comments of a story or chapter, or the replies of one comment.

        ``total`` is only known for the replies of one comment. Target
        listings page through the index and leave it None.
        """
        if sort not in SORTS:
            raise InvalidActionError(sort)

        cache_key = self.cache.list_key(
            story_id,
            chapter_id,
            parent_id,
            cursor or (f"page{page}" if page else None),
            limit,
            sort,
            include_replies,
        )
        cached = await self.cache.get_list(cache_key)
        if cached is not None:
            comments = [Comment.from_dict(item) for item in cached["items"]]
            counts = {UUID(key): value for key, value in cached["reply_counts"].items()}
            return CommentPage(
                items=[self.view(c, counts.get(c.comment_id, 0), viewer) for c in comments],
                total=cached["total"],
                limit=limit,
                has_more=cached["has_more"],
                next_cursor=cached["next_cursor"],
                page=page,
            )

        if parent_id is not None:
            parent = await self._get_comment(parent_id)
            subtree = await self.repository.list_subtree(parent.root_id, parent.path)
            items, total, has_more = self._page_in_memory(
                [c for c in subtree if c.parent_id == parent_id], sort, cursor, page, limit
            )
        elif sort == "popular":
            # Score order has no index; rank the newest scan_limit rows
            window = await self.repository.list_by_target(
                story_id,
                chapter_id,
                self.policy.scan_limit,
                roots_only=not include_replies,
            )
            items, _, has_more = self._page_in_memory(window, sort, cursor, page, limit)
            total = None
        else:
            items, has_more = await self._page_by_index(
                story_id, chapter_id, not include_replies, sort, cursor, page, limit
            )
            total = None

        next_cursor = (
            encode_cursor({"sort": sort, "key": _sort_key(items[-1], sort)})
            if has_more and items
            else None
        )
        counts = await self.add_reply_counts_to_comments(items)

        await self.cache.set_list(
            cache_key,
            {
                "items": [c.to_dict() for c in items],
                "reply_counts": {str(key): value for key, value in counts.items()},
                "total": total,
                "has_more": has_more,
                "next_cursor": next_cursor,
            },
        )
        return CommentPage(
            items=[self.view(c, counts[c.comment_id], viewer) for c in items],
            total=total,
            limit=limit,
            has_more=has_more,
            next_cursor=next_cursor,
            page=page,
        )

    async def get_comment_thread(
        self, root_id: UUID, viewer: Viewer | None = None
    ) -> CommentView:
        """Root comment with its nested replies, oldest reply first.

        A reply is shown only while its parent is shown, so deleting or hiding
        a comment hides its whole subtree without touching the replies.
        """
        subtree = await self.cache.get_thread(root_id)
        if subtree is None:
            root = await self._get_comment(root_id)
            if root.level != 0:
                root = await self._get_comment(root.root_id)
            subtree = await self.repository.list_subtree(root.root_id, root.path)
            await self.cache.set_thread(root.comment_id, subtree)

        show_all = bool(viewer and viewer.is_admin)
        by_level = sorted(subtree, key=lambda c: (c.level, c.created_at))
        if not by_level or by_level[0].level != 0:
            raise CommentNotFoundError
        root = by_level[0]
        if not (root.is_active or show_all):
            raise CommentNotFoundError

        views: dict[UUID, CommentView] = {
            root.comment_id: self.view(root, self._count_replies(root, subtree), viewer)
        }
        for comment in by_level[1:]:
            parent_view = views.get(comment.parent_id) if comment.parent_id else None
            if parent_view is None or not (comment.is_active or show_all):
                continue
            view = self.view(comment, self._count_replies(comment, subtree), viewer)
            parent_view.replies.append(view)
            views[comment.comment_id] = view

        return views[root.comment_id]

    async def get_comment_stats(
        self,
        story_id: UUID,
        chapter_id: UUID | None = None,
        range_: str = "7d",
    ) -> dict[str, Any]:
        """Counts and engagement totals for a story or chapter over a time range."""
        if range_ not in STATS_RANGES:
            raise InvalidActionError(range_)

        cache_key = self.cache.stats_key(story_id, chapter_id, range_)
        cached = await self.cache.get_stats(cache_key)
        if cached is not None:
            return cached

        since = datetime.now(UTC) - STATS_RANGES[range_]
        comments: list[Comment] = []
        after: tuple[datetime, UUID] | None = None
        while True:
            batch = await self.repository.list_by_target(
                story_id, chapter_id, self.policy.scan_limit, after=after
            )
            recent = [c for c in batch if c.created_at >= since]
            comments.extend(recent)
            if len(recent) < len(batch) or len(batch) < self.policy.scan_limit:
                break
            after = (batch[-1].created_at, batch[-1].comment_id)

        by_status = {status.value: 0 for status in CommentStatus}
        for comment in comments:
            by_status[comment.status.value] += 1

        active = [c for c in comments if c.is_active]
        stats = {
            "story_id": str(story_id),
            "chapter_id": str(chapter_id) if chapter_id else None,
            "range": range_,
            "total": len(comments),
            "by_status": by_status,
            "flagged": sum(1 for c in comments if c.flag_count > 0),
            "total_likes": sum(c.like_count for c in active),
            "total_dislikes": sum(c.dislike_count for c in active),
            "avg_score": round(sum(c.score for c in active) / len(active), 4)
            if active
            else 0.0,
        }
        await self.cache.set_stats(cache_key, stats)
        return stats
