"""FastAPI dependencies for the comment system.

Provides dependency injection for:
- Comment service and moderation engine
- Rate limiting per scope (admins bypass)
- Spam guard
- Error mapping from domain errors to HTTP errors
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status

from src.auth.dependencies import OptionalUser
from src.comments.exceptions import CommentError
from src.comments.guards import RateLimiter, SpamGuard
from src.comments.moderation import ModerationEngine
from src.comments.service import CommentService
from src.config import get_settings
from src.core.hashing import hash_identifier
from src.core.middleware import get_client_ip
from src.notifications.admin_service import AdminNotificationService


logger = structlog.get_logger(__name__)

SERVICE_UNAVAILABLE = "Comment service unavailable"


def _from_state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=SERVICE_UNAVAILABLE,
        )
    return service


async def get_comment_service(request: Request) -> CommentService:
    """Get comment service from app state."""
    return _from_state(request, "comment_service")


async def get_moderation_engine(request: Request) -> ModerationEngine:
    """Get moderation engine from app state."""
    return _from_state(request, "moderation_engine")


async def get_spam_guard(request: Request) -> SpamGuard | None:
    """Get the spam guard, or None when abuse checks are not wired."""
    return getattr(request.app.state, "spam_guard", None)


CommentServiceDep = Annotated[CommentService, Depends(get_comment_service)]
ModerationEngineDep = Annotated[ModerationEngine, Depends(get_moderation_engine)]
SpamGuardDep = Annotated[SpamGuard | None, Depends(get_spam_guard)]


# ==============================================================================
# Rate limiting
# ==============================================================================


class RateLimit:
    """Dependency enforcing one rate-limit scope.

    The identity is the user id when authenticated, else the hashed client IP.
    Admins are never limited.
    """

    def __init__(self, scope: str):
        self.scope = scope

    async def __call__(self, request: Request, user: OptionalUser) -> None:
        if user is not None and user.is_admin:
            return

        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return

        if user is not None:
            identity = f"user:{user.id}"
        else:
            ip_hash = hash_identifier(
                get_client_ip(request), get_settings().comment_hash_salt
            )
            identity = f"ip:{ip_hash or 'unknown'}"

        decision = await limiter.hit(self.scope, identity)
        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
                headers=decision.headers,
            )


# ==============================================================================
# Error mapping
# ==============================================================================

STATUS_MAP: dict[str, int] = {
    "comment_not_found": status.HTTP_404_NOT_FOUND,
    "parent_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_target": status.HTTP_400_BAD_REQUEST,
    "content_too_long": status.HTTP_400_BAD_REQUEST,
    "invalid_content": status.HTTP_400_BAD_REQUEST,
    "invalid_action": status.HTTP_400_BAD_REQUEST,
    "invalid_cursor": status.HTTP_400_BAD_REQUEST,
    "no_reports": status.HTTP_400_BAD_REQUEST,
    "duplicate_content": status.HTTP_400_BAD_REQUEST,
    "not_owner_or_expired": status.HTTP_403_FORBIDDEN,
    "self_flag_not_allowed": status.HTTP_403_FORBIDDEN,
    "delete_not_allowed": status.HTTP_403_FORBIDDEN,
    "already_removed": status.HTTP_409_CONFLICT,
    "comment_not_active": status.HTTP_409_CONFLICT,
    "already_flagged": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "rate_limit_exceeded": status.HTTP_429_TOO_MANY_REQUESTS,
    "parent_resolution_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "hierarchy_depth_violation": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def handle_comment_error(error: CommentError) -> HTTPException:
    """Convert comment errors to HTTP exceptions."""
    status_code = STATUS_MAP.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("comment_invariant_violation", code=error.code, error=error.message)

    return HTTPException(status_code=status_code, detail=error.message)


async def get_admin_notification_service(request: Request) -> AdminNotificationService:
    """Get admin notification service (audit log) from app state."""
    return _from_state(request, "admin_notification_service")


AdminNotificationServiceDep = Annotated[
    AdminNotificationService, Depends(get_admin_notification_service)
]
