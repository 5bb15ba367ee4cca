"""Comment hierarchy and moderation.

Provides:
- Bounded-depth threads (levels 0-2) with materialized paths
- Quote conversion of deep replies
- Reactions with engagement scoring
- Spam/toxicity analysis, reports and moderation state machine
- Redis cache, rate limiting and abuse guards

Note: Routers are not exported here to avoid circular imports.
Import directly from src.comments.router / src.comments.admin_router.
"""

from src.comments.models import (
    COMMENTS_TABLES_CQL,
    Comment,
    CommentStatus,
    CommentTarget,
    QuoteData,
    ReactionAction,
    TargetType,
)
from src.comments.moderation import ModerationEngine
from src.comments.service import CommentService


__all__ = [
    "COMMENTS_TABLES_CQL",
    "Comment",
    "CommentService",
    "CommentStatus",
    "CommentTarget",
    "ModerationEngine",
    "QuoteData",
    "ReactionAction",
    "TargetType",
]
