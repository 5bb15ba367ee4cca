"""Engagement score used to rank comments by popularity."""

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.comments.models import Comment


if TYPE_CHECKING:
    from src.config.settings import Settings


@dataclass(frozen=True)
class ScoringWeights:
    like: float = 1.0
    dislike: float = 1.0
    reply: float = 0.5
    recency: float = 2.0
    decay_hours: float = 168.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ScoringWeights":
        return cls(
            like=settings.score_like_weight,
            dislike=settings.score_dislike_weight,
            reply=settings.score_reply_weight,
            recency=settings.score_recency_weight,
            decay_hours=settings.score_decay_hours,
        )


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def engagement_score(
    likes: int,
    dislikes: int,
    replies: int,
    created_at: datetime | None,
    weights: ScoringWeights | None = None,
    now: datetime | None = None,
) -> float:
    """Score = weighted likes - weighted dislikes + weighted replies + recency.

    Recency decays linearly from ``weights.recency`` for a brand-new comment
    to 0 after ``weights.decay_hours``. Always returns a finite number.
    """
    weights = weights or ScoringWeights()
    now = now or datetime.now(UTC)

    decay = 0.0
    if created_at is not None and weights.decay_hours > 0:
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        age_hours = max(0.0, (now - created_at).total_seconds() / 3600)
        decay = max(0.0, 1 - age_hours / weights.decay_hours)

    score = (
        _finite(max(likes, 0) * weights.like)
        - _finite(max(dislikes, 0) * weights.dislike)
        + _finite(max(replies, 0) * weights.reply)
        + _finite(decay * weights.recency)
    )
    return round(_finite(score), 4)


def score_comment(
    comment: Comment, weights: ScoringWeights | None = None, now: datetime | None = None
) -> float:
    """Score a comment from its current engagement."""
    return engagement_score(
        likes=comment.like_count,
        dislikes=comment.dislike_count,
        replies=comment.reply_count,
        created_at=comment.created_at,
        weights=weights,
        now=now,
    )
