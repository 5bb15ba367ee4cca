"""Rate limiting and abuse guards for the comment API.

- Sliding-window request limits per identity (user id, else client IP)
- Velocity, duplicate-content and per-IP guards on comment creation
- Stateless content checks before anything is persisted

Every Redis-backed guard fails open: if Redis is missing or errors, the
request goes through and the failure is logged.
"""

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import structlog

from src.comments.exceptions import (
    ContentTooLongError,
    DuplicateContentError,
    InvalidContentError,
    RateLimitExceededError,
)
from src.comments.moderation import CAPS_PATTERN, SPECIAL_CHARS_PATTERN
from src.core.hashing import content_hash


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from src.config.settings import Settings


logger = structlog.get_logger(__name__)


# ==============================================================================
# Content guard
# ==============================================================================

MIN_LENGTH_FOR_CAPS_CHECK = 10


def check_content(content: object, max_length: int = 2000) -> str:
    """Reject empty, oversized, shouting or symbol-heavy content.

    Returns the stripped content.
    """
    if not isinstance(content, str) or not content.strip():
        raise InvalidContentError("Comment content cannot be empty")

    text = content.strip()
    if len(text) > max_length:
        raise ContentTooLongError(max_length)

    if (
        len(text) > MIN_LENGTH_FOR_CAPS_CHECK
        and len(CAPS_PATTERN.findall(text)) / len(text) > 0.7
    ):
        raise InvalidContentError("Please do not write comments in all caps")

    if len(SPECIAL_CHARS_PATTERN.findall(text)) / len(text) > 0.5:
        raise InvalidContentError("Comment contains too many special characters")

    return text


# ==============================================================================
# Sliding-window rate limiter
# ==============================================================================


@dataclass(frozen=True)
class RateLimitRule:
    scope: str
    limit: int
    window: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    current: int
    remaining: int
    rule: RateLimitRule

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.rule.window),
            "X-RateLimit-Limit": str(self.rule.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


GENERAL = "general"
CREATE = "create"
REACTION = "reaction"
FLAG = "flag"


class RateLimiter:
    """Per-identity sliding-window counters stored in Redis sorted sets."""

    def __init__(
        self,
        redis: "Redis | None",
        rules: dict[str, RateLimitRule],
        enabled: bool = True,
    ):
        self.redis = redis
        self.rules = rules
        self.enabled = enabled

    @classmethod
    def from_settings(cls, redis: "Redis | None", settings: "Settings") -> "RateLimiter":
        rules = [
            RateLimitRule(
                GENERAL, settings.rate_limit_general_requests, settings.rate_limit_general_window
            ),
            RateLimitRule(
                CREATE, settings.rate_limit_create_requests, settings.rate_limit_create_window
            ),
            RateLimitRule(
                REACTION,
                settings.rate_limit_reaction_requests,
                settings.rate_limit_reaction_window,
            ),
            RateLimitRule(FLAG, settings.rate_limit_flag_requests, settings.rate_limit_flag_window),
        ]
        return cls(
            redis,
            rules={rule.scope: rule for rule in rules},
            enabled=settings.rate_limit_enabled,
        )

    @staticmethod
    def key(scope: str, identity: str) -> str:
        return f"ratelimit:{scope}:{identity}"

    async def hit(self, scope: str, identity: str) -> RateLimitDecision:
        """Count a request and decide whether it is within the limit."""
        rule = self.rules[scope]
        if not self.enabled:
            return RateLimitDecision(True, 0, rule.limit, rule)

        if self.redis is None:
            logger.warning(
                "rate_limit_check_failed",
                scope=scope,
                error="redis unavailable",
                action="allowing_request",
            )
            return RateLimitDecision(True, 0, rule.limit, rule)

        key = self.key(scope, identity)
        now = time.time()
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - rule.window)
            pipe.zadd(key, {f"{now}:{uuid4().hex}": now})
            pipe.zcard(key)
            pipe.expire(key, rule.window)
            _, _, current, _ = await pipe.execute()
        except Exception as e:
            logger.warning(
                "rate_limit_check_failed",
                scope=scope,
                error=str(e),
                action="allowing_request",
            )
            return RateLimitDecision(True, 0, rule.limit, rule)

        current = int(current)
        allowed = current <= rule.limit
        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                scope=scope,
                current=current,
                limit=rule.limit,
            )
        return RateLimitDecision(allowed, current, max(0, rule.limit - current), rule)


# ==============================================================================
# Spam guard
# ==============================================================================


class SpamGuard:
    """Velocity, duplicate-content and per-IP checks for new comments."""

    def __init__(
        self,
        redis: "Redis | None",
        velocity_max: int = 20,
        velocity_window: int = 3600,
        duplicate_window: int = 300,
        ip_max: int = 30,
        ip_window: int = 3600,
    ):
        self.redis = redis
        self.velocity_max = velocity_max
        self.velocity_window = velocity_window
        self.duplicate_window = duplicate_window
        self.ip_max = ip_max
        self.ip_window = ip_window

    @classmethod
    def from_settings(cls, redis: "Redis | None", settings: "Settings") -> "SpamGuard":
        return cls(
            redis,
            velocity_max=settings.spam_velocity_max_comments,
            velocity_window=settings.spam_velocity_window,
            duplicate_window=settings.spam_duplicate_window,
            ip_max=settings.spam_ip_max_comments,
            ip_window=settings.spam_ip_window,
        )

    @staticmethod
    def _velocity_key(user_id: UUID) -> str:
        return f"spamguard:velocity:{user_id}"

    @staticmethod
    def _duplicate_key(user_id: UUID, content: str) -> str:
        return f"spamguard:duplicate:{user_id}:{content_hash(content)}"

    @staticmethod
    def _ip_key(ip_hash: str) -> str:
        return f"spamguard:ip:{ip_hash}"

    async def check(self, user_id: UUID, content: str, ip_hash: str | None = None) -> None:
        """Raise if the user is posting too fast or repeating themselves.

        Raises:
            RateLimitExceededError: Velocity or per-IP limit reached.
            DuplicateContentError: Same content posted within the window.
        """
        if self.redis is None:
            return

        now = time.time()
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(
                self._velocity_key(user_id), 0, now - self.velocity_window
            )
            pipe.zcard(self._velocity_key(user_id))
            pipe.exists(self._duplicate_key(user_id, content))
            if ip_hash:
                pipe.zremrangebyscore(self._ip_key(ip_hash), 0, now - self.ip_window)
                pipe.zcard(self._ip_key(ip_hash))
            results = await pipe.execute()
        except Exception as e:
            logger.warning(
                "spam_guard_failed",
                user_id=str(user_id),
                error=str(e),
                action="allowing_request",
            )
            return

        recent_count, duplicate = int(results[1]), bool(results[2])
        ip_count = int(results[4]) if ip_hash else 0

        if recent_count >= self.velocity_max:
            logger.warning("comment_velocity_exceeded", user_id=str(user_id), count=recent_count)
            raise RateLimitExceededError(
                "You are posting comments too quickly, please slow down"
            )
        if duplicate:
            logger.warning("duplicate_comment_blocked", user_id=str(user_id))
            raise DuplicateContentError
        if ip_count >= self.ip_max:
            logger.warning("comment_ip_velocity_exceeded", ip_hash=ip_hash, count=ip_count)
            raise RateLimitExceededError(
                "Too many comments from your network, please try again later"
            )

    async def record(self, user_id: UUID, content: str, ip_hash: str | None = None) -> None:
        """Remember a successfully created comment."""
        if self.redis is None:
            return

        now = time.time()
        member = f"{now}:{uuid4().hex}"
        try:
            pipe = self.redis.pipeline()
            pipe.zadd(self._velocity_key(user_id), {member: now})
            pipe.expire(self._velocity_key(user_id), self.velocity_window)
            pipe.setex(self._duplicate_key(user_id, content), self.duplicate_window, "1")
            if ip_hash:
                pipe.zadd(self._ip_key(ip_hash), {member: now})
                pipe.expire(self._ip_key(ip_hash), self.ip_window)
            await pipe.execute()
        except Exception as e:
            logger.warning("spam_guard_failed", user_id=str(user_id), error=str(e))
