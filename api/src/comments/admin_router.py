"""Admin moderation endpoints for comments.

Every route requires the admin role. Authorization runs before any comment
lookup, so non-admins get 403 whether or not the comment exists.
"""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, HTTPException, Query, status

from src.auth.dependencies import AdminUser
from src.comments.dependencies import (
    AdminNotificationServiceDep,
    CommentServiceDep,
    ModerationEngineDep,
    handle_comment_error,
)
from src.comments.exceptions import CommentError
from src.comments.models import Comment, CommentStatus, ResolutionStatus
from src.comments.schemas import (
    AnalysisResponse,
    AuditLogResponse,
    AutoModerateRequest,
    AutoModerationResponse,
    BulkModerateRequest,
    BulkModerationResponse,
    DismissReportRequest,
    Envelope,
    HardDeleteRequest,
    ModerateCommentRequest,
    ModerationCommentResponse,
    ModerationResultResponse,
    Pagination,
    ResolveReportRequest,
)
from src.config import get_settings


logger = structlog.get_logger(__name__)


router = APIRouter(prefix="/v1/admin/comments", tags=["comments-admin"])


async def _moderation_page(
    comments: list[Comment], comment_service: CommentServiceDep
) -> list[ModerationCommentResponse]:
    counts = await comment_service.add_reply_counts_to_comments(comments)
    return [
        ModerationCommentResponse.from_comment(comment, counts[comment.comment_id])
        for comment in comments
    ]


# ==============================================================================
# Queues and statistics
# ==============================================================================


@router.get(
    "/queue",
    response_model=Envelope[list[ModerationCommentResponse]],
    summary="Moderation queue",
)
async def get_moderation_queue(
    _admin: AdminUser,
    moderation: ModerationEngineDep,
    comment_service: CommentServiceDep,
    status_: CommentStatus = Query(default=CommentStatus.PENDING, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
) -> Envelope[list[ModerationCommentResponse]]:
    """Comments in a moderation status, most reported first."""
    comments, total = await moderation.get_moderation_queue(status_, limit, skip)
    return Envelope(
        data=await _moderation_page(comments, comment_service),
        pagination=Pagination(has_more=skip + limit < total, limit=limit, total=total),
    )


@router.get(
    "/reported",
    response_model=Envelope[list[ModerationCommentResponse]],
    summary="Reported comments",
)
async def get_reported_comments(
    _admin: AdminUser,
    moderation: ModerationEngineDep,
    comment_service: CommentServiceDep,
    status_: ResolutionStatus = Query(default=ResolutionStatus.PENDING, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
) -> Envelope[list[ModerationCommentResponse]]:
    comments, total = await moderation.get_reported_comments(status_, limit, skip)
    return Envelope(
        data=await _moderation_page(comments, comment_service),
        pagination=Pagination(has_more=skip + limit < total, limit=limit, total=total),
    )


@router.get(
    "/stats",
    response_model=Envelope[dict[str, Any]],
    summary="Moderation statistics",
)
async def get_moderation_stats(
    _admin: AdminUser,
    moderation: ModerationEngineDep,
) -> Envelope[dict[str, Any]]:
    stats = await moderation.get_moderation_stats()
    return Envelope(
        data={
            "status_counts": stats.status_counts,
            "flagged_count": stats.flagged_count,
            "avg_spam_score": stats.avg_spam_score,
            "avg_toxicity_score": stats.avg_toxicity_score,
        }
    )


# ==============================================================================
# Moderation actions
# ==============================================================================


@router.post(
    "/bulk-moderate",
    response_model=Envelope[BulkModerationResponse],
    summary="Bulk moderate comments",
)
async def bulk_moderate(
    admin: AdminUser,
    data: BulkModerateRequest,
    moderation: ModerationEngineDep,
) -> Envelope[BulkModerationResponse]:
    """Moderate up to ``moderation_bulk_max`` comments; failures are reported per id."""
    bulk_max = get_settings().moderation_bulk_max
    if len(data.comment_ids) > bulk_max:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {bulk_max} comments can be moderated at once",
        )

    try:
        result = await moderation.bulk_moderate(
            data.comment_ids, admin.id, data.action, data.reason
        )
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(data=BulkModerationResponse.from_result(result))


@router.post(
    "/auto-moderate",
    response_model=Envelope[AutoModerationResponse],
    summary="Run auto-moderation",
)
async def auto_moderate(
    admin: AdminUser,
    moderation: ModerationEngineDep,
    data: AutoModerateRequest | None = Body(default=None),
) -> Envelope[AutoModerationResponse]:
    """Sweep active comments: spam score, then toxicity, then report count."""
    data = data or AutoModerateRequest()
    actions = await moderation.auto_moderation(
        moderator_id=admin.id,
        spam_threshold=data.spam_threshold,
        toxicity_threshold=data.toxicity_threshold,
        flag_threshold=data.flag_threshold,
        limit=data.limit,
    )
    return Envelope(data=AutoModerationResponse(processed=len(actions), actions=actions))


@router.post(
    "/{comment_id}/moderate",
    response_model=Envelope[ModerationResultResponse],
    summary="Moderate comment",
)
async def moderate_comment(
    admin: AdminUser,
    comment_id: UUID,
    data: ModerateCommentRequest,
    moderation: ModerationEngineDep,
) -> Envelope[ModerationResultResponse]:
    """Approve, hide, delete or mark a comment as spam."""
    try:
        result = await moderation.moderate_comment(
            comment_id, admin.id, data.action, data.reason
        )
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(data=ModerationResultResponse.from_result(result))


@router.post(
    "/{comment_id}/analyze",
    response_model=Envelope[AnalysisResponse],
    summary="Re-run spam and toxicity analysis",
)
async def analyze_comment(
    _admin: AdminUser,
    comment_id: UUID,
    moderation: ModerationEngineDep,
) -> Envelope[AnalysisResponse]:
    try:
        result = await moderation.analyze_comment_by_id(comment_id)
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(
        data=AnalysisResponse(
            id=comment_id,
            spam_score=result.spam_score,
            toxicity_score=result.toxicity_score,
            status=result.status,
        )
    )


@router.delete(
    "/{comment_id}/hard",
    response_model=Envelope[dict[str, Any]],
    summary="Permanently delete comment",
)
async def hard_delete_comment(
    admin: AdminUser,
    comment_id: UUID,
    moderation: ModerationEngineDep,
    data: HardDeleteRequest | None = Body(default=None),
) -> Envelope[dict[str, Any]]:
    """Irreversibly remove a comment. A snapshot is kept in the audit log."""
    try:
        snapshot = await moderation.hard_delete_comment(
            comment_id, admin.id, data.reason if data else None
        )
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(message="Comment permanently deleted", data=snapshot)


@router.get(
    "/{comment_id}/audit-log",
    response_model=Envelope[list[AuditLogResponse]],
    summary="Audit trail of a comment",
)
async def get_audit_log(
    _admin: AdminUser,
    comment_id: UUID,
    admin_notifications: AdminNotificationServiceDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> Envelope[list[AuditLogResponse]]:
    entries = await admin_notifications.get_audit_logs_for_target(comment_id, limit)
    return Envelope(data=[AuditLogResponse.model_validate(entry) for entry in entries])


# ==============================================================================
# Reports
# ==============================================================================


@router.post(
    "/reported/{comment_id}/resolve",
    response_model=Envelope[ModerationCommentResponse],
    summary="Resolve reports",
)
async def resolve_report(
    admin: AdminUser,
    comment_id: UUID,
    data: ResolveReportRequest,
    moderation: ModerationEngineDep,
) -> Envelope[ModerationCommentResponse]:
    """Resolve the reports on a comment; hiding or deleting it when requested."""
    try:
        comment = await moderation.resolve_report(
            comment_id, admin.id, data.action, data.reason, data.admin_notes
        )
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(
        message="Report resolved", data=ModerationCommentResponse.from_comment(comment)
    )


@router.delete(
    "/reported/{comment_id}/dismiss",
    response_model=Envelope[ModerationCommentResponse],
    summary="Dismiss reports",
)
async def dismiss_report(
    admin: AdminUser,
    comment_id: UUID,
    moderation: ModerationEngineDep,
    data: DismissReportRequest | None = Body(default=None),
) -> Envelope[ModerationCommentResponse]:
    try:
        comment = await moderation.dismiss_report(
            comment_id,
            admin.id,
            data.reason if data else None,
            data.admin_notes if data else None,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(
        message="Report dismissed", data=ModerationCommentResponse.from_comment(comment)
    )
