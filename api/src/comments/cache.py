"""Redis cache for comment lists, threads and statistics.

Keys:
- comments:story:{story}:chapter:{chapter|none}:parent:{parent|none}:cursor:{cursor|none}:limit:{n}:sort:{sort}:replies:{0|1}
- thread:{root_id}
- stats:story:{story}:chapter:{chapter|none}:range:{range}

Entries are written with per-kind TTLs and expire inside Redis. Any mutation
of a comment drops the lists of its story and chapter, its thread and all
statistics; bulk admin operations drop everything.
"""

import json
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from redis.exceptions import RedisError

from src.comments.models import Comment


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from src.config.settings import Settings


logger = structlog.get_logger(__name__)

CACHE_PREFIXES = ("comments:", "thread:", "stats:")


def _part(value: Any, empty: str = "none") -> str:
    return str(value) if value not in (None, "") else empty


class CommentCache:
    """Read-through cache with relationship-keyed invalidation."""

    def __init__(
        self,
        redis: "Redis | None",
        list_ttl: int = 300,
        thread_ttl: int = 600,
        stats_ttl: int = 900,
        enabled: bool = True,
    ):
        self.redis = redis
        self.list_ttl = list_ttl
        self.thread_ttl = thread_ttl
        self.stats_ttl = stats_ttl
        self.enabled = enabled

    @classmethod
    def from_settings(cls, redis: "Redis | None", settings: "Settings") -> "CommentCache":
        return cls(
            redis,
            list_ttl=settings.cache_list_ttl,
            thread_ttl=settings.cache_thread_ttl,
            stats_ttl=settings.cache_stats_ttl,
            enabled=settings.cache_enabled,
        )

    @property
    def available(self) -> bool:
        return self.enabled and self.redis is not None

    # ==========================================================================
    # Keys
    # ==========================================================================

    @staticmethod
    def list_key(
        story_id: UUID,
        chapter_id: UUID | None = None,
        parent_id: UUID | None = None,
        cursor: str | None = None,
        limit: int = 20,
        sort: str = "newest",
        include_replies: bool = False,
    ) -> str:
        return (
            f"comments:story:{story_id}"
            f":chapter:{_part(chapter_id)}"
            f":parent:{_part(parent_id)}"
            f":cursor:{_part(cursor)}"
            f":limit:{limit}"
            f":sort:{sort}"
            f":replies:{int(include_replies)}"
        )

    @staticmethod
    def thread_key(root_id: UUID) -> str:
        return f"thread:{root_id}"

    @staticmethod
    def stats_key(story_id: UUID, chapter_id: UUID | None = None, range_: str = "7d") -> str:
        return f"stats:story:{story_id}:chapter:{_part(chapter_id)}:range:{range_}"

    # ==========================================================================
    # Reads and writes
    # ==========================================================================

    async def get(self, key: str) -> Any | None:
        """Cached JSON value, or None on a miss or cache failure."""
        if not self.available:
            return None
        try:
            cached = await self.redis.get(key)
        except RedisError as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None
        return json.loads(cached) if cached else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if not self.available:
            return
        try:
            await self.redis.setex(key, ttl, json.dumps(value, default=str))
        except RedisError as e:
            logger.warning("cache_write_failed", key=key, error=str(e))

    async def get_list(self, key: str) -> dict[str, Any] | None:
        return await self.get(key)

    async def set_list(self, key: str, value: dict[str, Any]) -> None:
        await self.set(key, value, self.list_ttl)

    async def get_thread(self, root_id: UUID) -> list[Comment] | None:
        cached = await self.get(self.thread_key(root_id))
        if cached is None:
            return None
        return [Comment.from_dict(item) for item in cached]

    async def set_thread(self, root_id: UUID, comments: list[Comment]) -> None:
        await self.set(
            self.thread_key(root_id),
            [comment.to_dict() for comment in comments],
            self.thread_ttl,
        )

    async def get_stats(self, key: str) -> dict[str, Any] | None:
        return await self.get(key)

    async def set_stats(self, key: str, value: dict[str, Any]) -> None:
        await self.set(key, value, self.stats_ttl)

    # ==========================================================================
    # Invalidation
    # ==========================================================================

    async def _delete_matching(self, pattern: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=pattern, count=500)]
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def invalidate(
        self,
        story_id: UUID,
        chapter_id: UUID | None = None,
        root_id: UUID | None = None,
    ) -> int:
        """Drop the story and chapter lists, one thread and all statistics."""
        if not self.available:
            return 0

        deleted = await self._delete_matching(f"comments:story:{story_id}:*")
        if chapter_id:
            deleted += await self._delete_matching(f"comments:*:chapter:{chapter_id}:*")
        if root_id:
            deleted += await self.redis.delete(self.thread_key(root_id))
        deleted += await self._delete_matching("stats:*")

        logger.debug(
            "comment_cache_invalidated",
            story_id=str(story_id),
            chapter_id=str(chapter_id) if chapter_id else None,
            root_id=str(root_id) if root_id else None,
            deleted=deleted,
        )
        return deleted

    async def invalidate_comment(self, comment: Comment) -> int:
        return await self.invalidate(
            comment.target.story_id, comment.target.chapter_id, comment.root_id
        )

    async def clear_all(self) -> int:
        """Drop every comment cache entry."""
        if not self.available:
            return 0

        deleted = 0
        for prefix in CACHE_PREFIXES:
            deleted += await self._delete_matching(f"{prefix}*")
        logger.info("comment_cache_cleared", deleted=deleted)
        return deleted
