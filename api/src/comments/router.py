"""Comment API endpoints.

Provides routes for:
- Listing, single comment, threads and statistics
- Creating, editing and deleting comments
- Reactions and reports

Every route shares the general rate limit; creation, reactions and reports
carry their own tighter limits as well.
"""

from typing import Any, Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, Depends, Query, status

from src.auth.dependencies import ClientInfo, CurrentUser, OptionalUser
from src.auth.schemas import TokenUser
from src.comments.dependencies import (
    CommentServiceDep,
    RateLimit,
    SpamGuardDep,
    handle_comment_error,
)
from src.comments.exceptions import CommentError
from src.comments.guards import CREATE, FLAG, GENERAL, REACTION
from src.comments.models import CommentTarget
from src.comments.schemas import (
    CommentResponse,
    CommentThreadResponse,
    CreateCommentRequest,
    CreatedCommentResponse,
    DeleteCommentRequest,
    DeletedCommentResponse,
    Envelope,
    FlagCommentRequest,
    ModerationCommentResponse,
    Pagination,
    ReactionRequest,
    ReactionResponse,
    UpdateCommentRequest,
)
from src.comments.service import Viewer
from src.config import get_settings
from src.core.hashing import hash_identifier


logger = structlog.get_logger(__name__)


router = APIRouter(
    prefix="/v1/comments",
    tags=["comments"],
    dependencies=[Depends(RateLimit(GENERAL))],
)


def _viewer(user: TokenUser | None) -> Viewer | None:
    if user is None:
        return None
    return Viewer(user_id=user.id, is_admin=user.is_admin)


# ==============================================================================
# Reads
# ==============================================================================


@router.get(
    "",
    response_model=Envelope[list[CommentResponse]],
    summary="List comments",
)
async def list_comments(
    comment_service: CommentServiceDep,
    user: OptionalUser,
    story_id: UUID,
    chapter_id: UUID | None = None,
    parent_id: UUID | None = None,
    cursor: str | None = None,
    page: int | None = Query(default=None, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort: Literal["newest", "oldest", "popular"] = "newest",
    include_replies: bool = False,
) -> Envelope[list[CommentResponse]]:
    """List active comments of a story or chapter, or the replies of one comment.

    Uses cursor-based pagination; ``page`` is accepted when no cursor is given.
    """
    try:
        result = await comment_service.list_comments(
            story_id=story_id,
            chapter_id=chapter_id,
            parent_id=parent_id,
            cursor=cursor,
            page=page,
            limit=limit,
            sort=sort,
            include_replies=include_replies,
            viewer=_viewer(user),
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return Envelope(
        data=[CommentResponse.from_view(view) for view in result.items],
        pagination=Pagination(
            has_more=result.has_more,
            next_cursor=result.next_cursor,
            limit=result.limit,
            page=result.page,
            total=result.total,
        ),
    )


@router.get(
    "/stats",
    response_model=Envelope[dict[str, Any]],
    summary="Comment statistics",
)
async def get_comment_stats(
    comment_service: CommentServiceDep,
    story_id: UUID,
    chapter_id: UUID | None = None,
    range_: Literal["1d", "7d", "30d"] = Query(default="7d", alias="range"),
) -> Envelope[dict[str, Any]]:
    try:
        stats = await comment_service.get_comment_stats(story_id, chapter_id, range_)
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(data=stats)


@router.get(
    "/thread/{root_id}",
    response_model=Envelope[CommentThreadResponse],
    summary="Get comment thread",
)
async def get_comment_thread(
    root_id: UUID,
    comment_service: CommentServiceDep,
    user: OptionalUser,
) -> Envelope[CommentThreadResponse]:
    """Root comment with its nested replies.

    Replies under a deleted or hidden comment are left out.
    """
    try:
        thread = await comment_service.get_comment_thread(root_id, _viewer(user))
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(data=CommentThreadResponse.from_view(thread))


@router.get(
    "/{comment_id}",
    # Admins get the moderation fields, so the envelope is not narrowed
    response_model=None,
    summary="Get comment",
)
async def get_comment(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: OptionalUser,
) -> Envelope[CommentResponse] | Envelope[ModerationCommentResponse]:
    """Get a single comment. Admins also see removed comments."""
    try:
        view = await comment_service.get_comment(comment_id, _viewer(user))
    except CommentError as e:
        raise handle_comment_error(e) from e

    if user is not None and user.is_admin:
        response = ModerationCommentResponse.from_comment(view.comment, view.reply_count)
        return Envelope[ModerationCommentResponse](
            data=response.model_copy(
                update={
                    "user_reaction": view.user_reaction,
                    "can_edit": view.can_edit,
                    "can_delete": view.can_delete,
                }
            )
        )
    return Envelope(data=CommentResponse.from_view(view))


# ==============================================================================
# Writes
# ==============================================================================


@router.post(
    "",
    response_model=Envelope[CreatedCommentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create comment",
    dependencies=[Depends(RateLimit(CREATE))],
)
async def create_comment(
    data: CreateCommentRequest,
    comment_service: CommentServiceDep,
    spam_guard: SpamGuardDep,
    user: CurrentUser,
    client_info: ClientInfo,
) -> Envelope[CreatedCommentResponse]:
    """Create a comment or a reply.

    Replies to a level 2 comment are stored as level 2 replies quoting the
    comment being answered.
    """
    user_agent, ip_address = client_info
    try:
        if spam_guard is not None and not user.is_admin:
            ip_hash = hash_identifier(ip_address, get_settings().comment_hash_salt)
            await spam_guard.check(user.id, data.content, ip_hash)
        else:
            ip_hash = None

        result = await comment_service.create_comment(
            author_id=user.id,
            author_name=user.display_name,
            content=data.content,
            target=CommentTarget(
                story_id=data.target.story_id,
                chapter_id=data.target.chapter_id,
                type=data.target.type,
            ),
            parent_id=data.hierarchy.parent_id if data.hierarchy else None,
            ip_address=ip_address,
            user_agent=user_agent,
            chapter_position=data.metadata.chapter_position if data.metadata else None,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    if spam_guard is not None and not user.is_admin:
        await spam_guard.record(user.id, data.content, ip_hash)

    view = comment_service.view(result.comment, 0, _viewer(user))
    response = CreatedCommentResponse(
        **CommentResponse.from_view(view).model_dump(), converted=result.converted
    )
    message = (
        "Reply posted as a quoted reply" if result.converted else "Comment posted"
    )
    return Envelope(message=message, data=response)


@router.put(
    "/{comment_id}",
    response_model=Envelope[CommentResponse],
    summary="Edit comment",
)
async def update_comment(
    comment_id: UUID,
    data: UpdateCommentRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> Envelope[CommentResponse]:
    """Edit a comment. Only the author may edit, inside the edit window."""
    try:
        comment = await comment_service.update_comment(
            comment_id=comment_id,
            user_id=user.id,
            content=data.content,
            edit_reason=data.edit_reason,
        )
        view = await comment_service.get_comment(comment.comment_id, _viewer(user))
    except CommentError as e:
        raise handle_comment_error(e) from e
    return Envelope(message="Comment updated", data=CommentResponse.from_view(view))


@router.delete(
    "/{comment_id}",
    response_model=Envelope[DeletedCommentResponse],
    summary="Delete comment",
)
async def delete_comment(
    comment_id: UUID,
    comment_service: CommentServiceDep,
    user: CurrentUser,
    data: DeleteCommentRequest | None = Body(default=None),
) -> Envelope[DeletedCommentResponse]:
    """Soft-delete a comment. Admins may delete any comment."""
    try:
        result = await comment_service.delete_comment(
            comment_id=comment_id,
            user_id=user.id,
            reason=data.reason if data else None,
            is_admin=user.is_admin,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return Envelope(
        message="Comment deleted",
        data=DeletedCommentResponse(
            id=result.comment.comment_id,
            status=result.comment.status,
            failed_side_effects=result.failed_side_effects,
        ),
    )


@router.post(
    "/{comment_id}/react",
    response_model=Envelope[ReactionResponse],
    summary="React to comment",
    dependencies=[Depends(RateLimit(REACTION))],
)
async def react_to_comment(
    comment_id: UUID,
    data: ReactionRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> Envelope[ReactionResponse]:
    """Like, dislike or remove a reaction. Likes and dislikes are exclusive."""
    try:
        comment = await comment_service.toggle_reaction(
            comment_id=comment_id,
            user_id=user.id,
            action=data.action,
            actor_name=user.display_name,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return Envelope(
        data=ReactionResponse(
            id=comment.comment_id,
            likes=comment.like_count,
            dislikes=comment.dislike_count,
            score=comment.score,
            user_reaction=comment.reaction_of(user.id),
        )
    )


@router.post(
    "/{comment_id}/flag",
    response_model=Envelope[dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
    summary="Report comment",
    dependencies=[Depends(RateLimit(FLAG))],
)
async def flag_comment(
    comment_id: UUID,
    data: FlagCommentRequest,
    comment_service: CommentServiceDep,
    user: CurrentUser,
) -> Envelope[dict[str, Any]]:
    """Report a comment for moderation. Authors cannot report their own comments."""
    try:
        comment = await comment_service.flag_comment(
            comment_id=comment_id,
            user_id=user.id,
            reason=data.reason.value,
            description=data.description,
        )
    except CommentError as e:
        raise handle_comment_error(e) from e

    return Envelope(
        message="Report received",
        data={"id": str(comment.comment_id), "flag_count": comment.flag_count},
    )
