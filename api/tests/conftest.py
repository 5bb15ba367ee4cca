"""Shared fixtures.

The comment repository and Redis are replaced by in-memory doubles so the real
service, engines, cache and guards run end to end without infrastructure.
Collaborators (user/story stores, notifications) are AsyncMocks.
"""

import copy
import fnmatch
import os
import tempfile
from collections import defaultdict
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="inkwell-logs-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.security import create_access_token  # noqa: E402
from src.comments.cache import CommentCache  # noqa: E402
from src.comments.guards import RateLimiter, SpamGuard  # noqa: E402
from src.comments.hierarchy import HierarchyEngine  # noqa: E402
from src.comments.models import (  # noqa: E402
    Comment,
    CommentStatus,
    CommentTarget,
    EditHistoryEntry,
    FlagEntry,
    ReactionAction,
    ReportResolution,
    TargetType,
)
from src.comments.moderation import ModerationConfig, ModerationEngine  # noqa: E402
from src.comments.quotes import QuoteConverter  # noqa: E402
from src.comments.sanitizer import ContentSanitizer  # noqa: E402
from src.comments.service import CommentPolicy, CommentService  # noqa: E402
from src.config import get_settings  # noqa: E402
from src.notifications.admin_service import AdminNotificationService  # noqa: E402
from src.notifications.service import NotificationService  # noqa: E402
from src.stories.service import ChapterStore, StoryStore  # noqa: E402
from src.users.service import UserStore  # noqa: E402


# ==============================================================================
# In-memory doubles
# ==============================================================================


class InMemoryCommentRepository:
    """Dict-backed implementation of the CommentRepository contract.

    Reads return copies so callers see stored state the way they would
    after a database round trip.
    """

    def __init__(self) -> None:
        self.comments: dict[UUID, Comment] = {}

    def _sorted_newest(self, comments: list[Comment]) -> list[Comment]:
        return sorted(
            comments, key=lambda c: (c.created_at, str(c.comment_id)), reverse=True
        )

    async def get(self, comment_id: UUID) -> Comment | None:
        comment = self.comments.get(comment_id)
        return copy.deepcopy(comment) if comment else None

    async def get_many(self, comment_ids) -> list[Comment]:
        return [
            copy.deepcopy(self.comments[comment_id])
            for comment_id in dict.fromkeys(comment_ids)
            if comment_id in self.comments
        ]

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
        matching = sorted(
            (
                c
                for c in self.comments.values()
                if c.target.story_id == story_id
                and c.target.chapter_id == chapter_id
                and (c.is_root or not roots_only)
            ),
            key=lambda c: (c.created_at, c.comment_id),
            reverse=not oldest_first,
        )
        if after is not None:
            if oldest_first:
                matching = [c for c in matching if (c.created_at, c.comment_id) > after]
            else:
                matching = [c for c in matching if (c.created_at, c.comment_id) < after]
        return copy.deepcopy(matching[:limit])

    async def list_subtree(self, root_id: UUID, path_prefix: str) -> list[Comment]:
        matching = [
            c
            for c in self.comments.values()
            if c.root_id == root_id and c.path.startswith(path_prefix)
        ]
        return copy.deepcopy(sorted(matching, key=lambda c: c.path))

    async def list_by_status(self, status: CommentStatus, limit: int) -> list[Comment]:
        matching = [c for c in self.comments.values() if c.status == status]
        return copy.deepcopy(self._sorted_newest(matching)[:limit])

    async def list_by_resolution(self, resolution_status: str, limit: int) -> list[Comment]:
        matching = [
            c
            for c in self.comments.values()
            if c.resolution.status and c.resolution.status.value == resolution_status
        ]
        return copy.deepcopy(matching[:limit])

    async def insert(self, comment: Comment) -> None:
        self.comments[comment.comment_id] = copy.deepcopy(comment)

    async def update_content(
        self,
        comment_id: UUID,
        content_original: str,
        content_sanitized: str,
        mentions: list[str],
        history_entry: EditHistoryEntry,
        updated_at: datetime,
    ) -> None:
        stored = self.comments[comment_id]
        stored.content_original = content_original
        stored.content_sanitized = content_sanitized
        stored.mentions = list(mentions)
        stored.edit_history.append(history_entry)
        stored.updated_at = updated_at

    async def apply_reaction(
        self, comment_id: UUID, user_id: UUID, action: ReactionAction
    ) -> None:
        stored = self.comments[comment_id]
        stored.likes.discard(user_id)
        stored.dislikes.discard(user_id)
        if action == ReactionAction.LIKE:
            stored.likes.add(user_id)
        elif action == ReactionAction.DISLIKE:
            stored.dislikes.add(user_id)

    async def register_reply(
        self, parent_id: UUID, reply_id: UUID, replied_at: datetime
    ) -> None:
        stored = self.comments[parent_id]
        stored.reply_ids.add(reply_id)
        stored.last_reply_at = replied_at

    async def update_score(self, comment_id: UUID, score: float) -> None:
        self.comments[comment_id].score = score

    async def update_status(
        self,
        comment: Comment,
        status: CommentStatus,
        moderated_by: UUID | None,
        moderated_at: datetime,
        reason: str | None,
    ) -> None:
        stored = self.comments[comment.comment_id]
        stored.status = status
        stored.moderated_by = moderated_by
        stored.moderated_at = moderated_at
        stored.moderation_reason = reason
        stored.updated_at = moderated_at

    async def save_analysis(
        self,
        comment_id: UUID,
        spam_score: float,
        toxicity_score: float,
        checked_at: datetime,
    ) -> None:
        stored = self.comments[comment_id]
        stored.spam_score = spam_score
        stored.toxicity_score = toxicity_score
        stored.checked_at = checked_at

    async def add_flag(self, comment_id: UUID, flag: FlagEntry) -> None:
        stored = self.comments[comment_id]
        stored.flags = [f for f in stored.flags if f.user_id != flag.user_id] + [flag]

    async def update_resolution(
        self, comment: Comment, resolution: ReportResolution
    ) -> None:
        self.comments[comment.comment_id].resolution = copy.deepcopy(resolution)

    async def delete(self, comment: Comment) -> None:
        self.comments.pop(comment.comment_id, None)


class FakePipeline:
    """Queues FakeRedis calls and runs them on ``execute``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.calls: list[tuple[Any, tuple, dict]] = []

    def __getattr__(self, name: str):
        method = getattr(self.redis, name)

        def queue(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        results = [await method(*args, **kwargs) for method, args, kwargs in self.calls]
        self.calls = []
        return results


class FakeRedis:
    """The subset of redis.asyncio used by the cache and the guards."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = defaultdict(dict)

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self.values[key] = value
        return True

    async def exists(self, key: str) -> int:
        return int(key in self.values or bool(self.zsets.get(key)))

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                deleted += 1
            if self.zsets.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def scan_iter(self, match: str = "*", count: int | None = None):
        for key in list(self.values):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def zremrangebyscore(self, key: str, minimum: float, maximum: float) -> int:
        members = self.zsets.get(key, {})
        expired = [m for m, score in members.items() if minimum <= score <= maximum]
        for member in expired:
            del members[member]
        return len(expired)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets[key].update(mapping)
        return len(mapping)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def expire(self, key: str, seconds: int) -> bool:
        return True

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)


# ==============================================================================
# Identities
# ==============================================================================


@pytest.fixture
def story_id() -> UUID:
    return uuid4()


@pytest.fixture
def chapter_id() -> UUID:
    return uuid4()


@pytest.fixture
def author_id() -> UUID:
    return uuid4()


@pytest.fixture
def reader_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_id() -> UUID:
    return uuid4()


@pytest.fixture
def story_target(story_id: UUID) -> CommentTarget:
    return CommentTarget(story_id=story_id, chapter_id=None, type=TargetType.STORY)


@pytest.fixture
def chapter_target(story_id: UUID, chapter_id: UUID) -> CommentTarget:
    return CommentTarget(story_id=story_id, chapter_id=chapter_id, type=TargetType.CHAPTER)


# ==============================================================================
# Service graph
# ==============================================================================


@pytest.fixture
def repository() -> InMemoryCommentRepository:
    return InMemoryCommentRepository()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CommentCache:
    return CommentCache(fake_redis)


@pytest.fixture
def user_store() -> AsyncMock:
    store = AsyncMock(spec=UserStore)
    store.get_user.return_value = None
    store.get_users_by_usernames.return_value = []
    return store


@pytest.fixture
def story_store() -> AsyncMock:
    return AsyncMock(spec=StoryStore)


@pytest.fixture
def chapter_store() -> AsyncMock:
    return AsyncMock(spec=ChapterStore)


@pytest.fixture
def notifications() -> AsyncMock:
    return AsyncMock(spec=NotificationService)


@pytest.fixture
def admin_notifications() -> AsyncMock:
    return AsyncMock(spec=AdminNotificationService)


@pytest.fixture
def moderation_engine(
    repository: InMemoryCommentRepository,
    admin_notifications: AsyncMock,
    cache: CommentCache,
) -> ModerationEngine:
    return ModerationEngine(
        repository=repository,
        admin_notifications=admin_notifications,
        config=ModerationConfig(),
        cache=cache,
    )


@pytest.fixture
def comment_service(
    repository: InMemoryCommentRepository,
    moderation_engine: ModerationEngine,
    cache: CommentCache,
    user_store: AsyncMock,
    story_store: AsyncMock,
    chapter_store: AsyncMock,
    notifications: AsyncMock,
    admin_notifications: AsyncMock,
) -> CommentService:
    return CommentService(
        repository=repository,
        hierarchy=HierarchyEngine(QuoteConverter()),
        sanitizer=ContentSanitizer(),
        moderation=moderation_engine,
        cache=cache,
        user_store=user_store,
        story_store=story_store,
        chapter_store=chapter_store,
        notifications=notifications,
        admin_notifications=admin_notifications,
        policy=CommentPolicy(hash_salt="test-salt"),
    )


# ==============================================================================
# HTTP
# ==============================================================================


def auth_headers(user_id: UUID, role: str = "user", name: str = "Reader") -> dict[str, str]:
    """Bearer header for a signed access token."""
    token = create_access_token({"sub": str(user_id), "role": role, "name": name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(
    comment_service: CommentService,
    moderation_engine: ModerationEngine,
    admin_notifications: AsyncMock,
    fake_redis: FakeRedis,
) -> TestClient:
    """Test client with the service graph wired onto app.state.

    The lifespan is not run, so no database or Redis connection is attempted.
    """
    from src.main import create_app  # noqa: PLC0415

    settings = get_settings()
    app = create_app()
    app.state.comment_service = comment_service
    app.state.moderation_engine = moderation_engine
    app.state.admin_notification_service = admin_notifications
    app.state.rate_limiter = RateLimiter.from_settings(fake_redis, settings)
    app.state.spam_guard = SpamGuard.from_settings(fake_redis, settings)
    return TestClient(app)
