"""Pydantic schemas for the comment API.

Request/Response models with validation for:
- Comment CRUD operations
- Reactions and reports
- Moderation and report resolution
- Response envelope and cursor pagination
"""

import base64
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.comments.exceptions import InvalidCursorError
from src.comments.models import (
    Comment,
    CommentStatus,
    FlagReason,
    ReactionAction,
    ResolutionAction,
    ResolutionStatus,
    TargetType,
)


if TYPE_CHECKING:
    from src.comments.moderation import BulkModerationResult, ModerationResult
    from src.comments.service import CommentView


T = TypeVar("T")


# ==============================================================================
# Envelope
# ==============================================================================


class Pagination(BaseModel):
    """Pagination block of list responses."""

    has_more: bool = False
    next_cursor: str | None = None
    limit: int
    page: int | None = None
    total: int | None = None


class Envelope(BaseModel, Generic[T]):
    """Response envelope shared by every endpoint."""

    success: bool = True
    message: str | None = None
    data: T | None = None
    pagination: Pagination | None = None


# ==============================================================================
# Request Schemas
# ==============================================================================


class TargetRequest(BaseModel):
    story_id: UUID
    chapter_id: UUID | None = None
    type: TargetType = TargetType.STORY


class HierarchyRequest(BaseModel):
    parent_id: UUID | None = None


class MetadataRequest(BaseModel):
    chapter_position: int | None = Field(None, ge=0)


class CreateCommentRequest(BaseModel):
    """Request to create a comment or a reply.

    Length is checked by the service so that oversized content is reported
    with its own error code.
    """

    content: str
    target: TargetRequest
    hierarchy: HierarchyRequest | None = None
    metadata: MetadataRequest | None = None


class UpdateCommentRequest(BaseModel):
    content: str
    edit_reason: str | None = Field(None, max_length=500)


class DeleteCommentRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class ReactionRequest(BaseModel):
    action: ReactionAction


class FlagCommentRequest(BaseModel):
    """Request to report a comment."""

    reason: FlagReason
    description: str | None = Field(None, max_length=1000)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str | None) -> str | None:
        """Strip whitespace; blank descriptions become None."""
        if v is None:
            return None
        return v.strip() or None


class ModerateCommentRequest(BaseModel):
    action: str = Field(..., description="approve, hide, delete or spam")
    reason: str | None = Field(None, max_length=500)


class BulkModerateRequest(BaseModel):
    comment_ids: list[UUID] = Field(..., min_length=1)
    action: str = Field(..., description="approve, hide, delete or spam")
    reason: str | None = Field(None, max_length=500)


class AutoModerateRequest(BaseModel):
    spam_threshold: float | None = Field(None, ge=0, le=1)
    toxicity_threshold: float | None = Field(None, ge=0, le=1)
    flag_threshold: int | None = Field(None, ge=1)
    limit: int | None = Field(None, ge=1, le=1000)


class ResolveReportRequest(BaseModel):
    action: ResolutionAction
    reason: str | None = Field(None, max_length=500)
    admin_notes: str | None = Field(None, max_length=2000)


class DismissReportRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
    admin_notes: str | None = Field(None, max_length=2000)


class HardDeleteRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


# ==============================================================================
# Response Schemas
# ==============================================================================


class AuthorResponse(BaseModel):
    id: UUID
    name: str
    avatar: str | None = None


class TargetResponse(BaseModel):
    story_id: UUID
    chapter_id: UUID | None = None
    type: TargetType


class QuoteResponse(BaseModel):
    quoted_comment_id: UUID
    quoted_username: str
    quoted_text: str
    quoted_full_text: str
    is_level_conversion: bool = True


class CommentResponse(BaseModel):
    """Response for a single comment."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    author: AuthorResponse
    target: TargetResponse
    content: str
    mentions: list[str] = Field(default_factory=list)
    quote: QuoteResponse | None = None
    parent_id: UUID | None = None
    root_id: UUID
    level: int
    path: str
    likes: int = 0
    dislikes: int = 0
    reply_count: int = 0
    last_reply_at: datetime | None = None
    score: float = 0.0
    status: CommentStatus
    is_edited: bool = False
    edited_at: datetime | None = None
    chapter_position: int | None = None
    user_reaction: ReactionAction | None = None
    can_edit: bool = False
    can_delete: bool = False
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def _fields(comment: Comment) -> dict[str, Any]:
        quote = comment.quote
        return {
            "id": comment.comment_id,
            "author": AuthorResponse(
                id=comment.author_id,
                name=comment.author_name,
                avatar=comment.author_avatar,
            ),
            "target": TargetResponse(
                story_id=comment.target.story_id,
                chapter_id=comment.target.chapter_id,
                type=comment.target.type,
            ),
            "content": comment.content_sanitized,
            "mentions": comment.mentions,
            "quote": QuoteResponse(**quote.to_dict()) if quote else None,
            "parent_id": comment.parent_id,
            "root_id": comment.root_id,
            "level": comment.level,
            "path": comment.path,
            "likes": comment.like_count,
            "dislikes": comment.dislike_count,
            "last_reply_at": comment.last_reply_at,
            "score": comment.score,
            "status": comment.status,
            "is_edited": comment.is_edited,
            "edited_at": comment.edit_history[-1].edited_at
            if comment.edit_history
            else None,
            "chapter_position": comment.chapter_position,
            "created_at": comment.created_at,
            "updated_at": comment.updated_at,
        }

    @classmethod
    def from_comment(cls, comment: Comment, reply_count: int | None = None) -> "CommentResponse":
        """Create response from a Comment entity, without viewer enrichment."""
        return cls(
            **cls._fields(comment),
            reply_count=reply_count if reply_count is not None else comment.reply_count,
        )

    @classmethod
    def from_view(cls, view: "CommentView") -> "CommentResponse":
        """Create response from a viewer-enriched comment."""
        return cls(
            **cls._fields(view.comment),
            reply_count=view.reply_count,
            user_reaction=view.user_reaction,
            can_edit=view.can_edit,
            can_delete=view.can_delete,
        )


class CreatedCommentResponse(CommentResponse):
    converted: bool = False


class CommentThreadResponse(CommentResponse):
    """Comment with nested replies."""

    replies: list["CommentThreadResponse"] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: "CommentView") -> "CommentThreadResponse":
        return cls(
            **cls._fields(view.comment),
            reply_count=view.reply_count,
            user_reaction=view.user_reaction,
            can_edit=view.can_edit,
            can_delete=view.can_delete,
            replies=[cls.from_view(reply) for reply in view.replies],
        )


class ResolutionResponse(BaseModel):
    status: ResolutionStatus | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    reason: str | None = None
    admin_notes: str | None = None
    action_taken: str | None = None


class FlagResponse(BaseModel):
    user_id: UUID
    reason: str
    description: str | None = None
    flagged_at: datetime


class ModerationCommentResponse(CommentResponse):
    """Comment with its moderation state, for admin views."""

    flag_count: int = 0
    flag_reasons: list[str] = Field(default_factory=list)
    flagged_by: list[UUID] = Field(default_factory=list)
    flags: list[FlagResponse] = Field(default_factory=list)
    resolution: ResolutionResponse = Field(default_factory=ResolutionResponse)
    spam_score: float = 0.0
    toxicity_score: float = 0.0
    checked_at: datetime | None = None
    moderated_by: UUID | None = None
    moderated_at: datetime | None = None
    moderation_reason: str | None = None

    @classmethod
    def from_comment(
        cls, comment: Comment, reply_count: int | None = None
    ) -> "ModerationCommentResponse":
        resolution = comment.resolution
        return cls(
            **cls._fields(comment),
            reply_count=reply_count if reply_count is not None else comment.reply_count,
            flag_count=comment.flag_count,
            flag_reasons=comment.flag_reasons,
            flagged_by=comment.flagged_by,
            flags=[
                FlagResponse(
                    user_id=flag.user_id,
                    reason=flag.reason,
                    description=flag.description,
                    flagged_at=flag.flagged_at,
                )
                for flag in comment.flags
            ],
            resolution=ResolutionResponse(
                status=resolution.status,
                resolved_by=resolution.resolved_by,
                resolved_at=resolution.resolved_at,
                reason=resolution.reason,
                admin_notes=resolution.admin_notes,
                action_taken=resolution.action_taken,
            ),
            spam_score=comment.spam_score,
            toxicity_score=comment.toxicity_score,
            checked_at=comment.checked_at,
            moderated_by=comment.moderated_by,
            moderated_at=comment.moderated_at,
            moderation_reason=comment.moderation_reason,
        )


class DeletedCommentResponse(BaseModel):
    id: UUID
    status: CommentStatus
    failed_side_effects: list[str] = Field(default_factory=list)


class ReactionResponse(BaseModel):
    id: UUID
    likes: int
    dislikes: int
    score: float
    user_reaction: ReactionAction | None = None


class AnalysisResponse(BaseModel):
    id: UUID
    spam_score: float
    toxicity_score: float
    status: CommentStatus


class ModerationResultResponse(BaseModel):
    id: UUID
    old_status: CommentStatus
    new_status: CommentStatus
    action: str
    reason: str | None = None

    @classmethod
    def from_result(cls, result: "ModerationResult") -> "ModerationResultResponse":
        return cls(
            id=result.comment_id,
            old_status=result.old_status,
            new_status=result.new_status,
            action=result.action,
            reason=result.reason,
        )


class BulkFailureResponse(BaseModel):
    id: UUID
    error: str


class BulkModerationResponse(BaseModel):
    successful: list[UUID] = Field(default_factory=list)
    failed: list[BulkFailureResponse] = Field(default_factory=list)
    total_processed: int = 0

    @classmethod
    def from_result(cls, result: "BulkModerationResult") -> "BulkModerationResponse":
        return cls(
            successful=[item.comment_id for item in result.successful],
            failed=[
                BulkFailureResponse(id=failure["id"], error=failure["error"])
                for failure in result.failed
            ],
            total_processed=result.total_processed,
        )


class AutoModerationResponse(BaseModel):
    processed: int
    actions: list[dict[str, Any]] = Field(default_factory=list)


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: UUID
    moderator_id: UUID
    action: str
    target_type: str
    target_id: UUID
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ==============================================================================
# Pagination Helpers
# ==============================================================================


def encode_cursor(data: dict[str, Any]) -> str:
    """Encode a pagination cursor as URL-safe base64 JSON."""
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode()


def decode_cursor(cursor: str) -> dict[str, Any]:
    """Decode a pagination cursor.

    Raises:
        InvalidCursorError: The cursor is not one this API produced.
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
    except ValueError as e:
        raise InvalidCursorError from e

    if not isinstance(data, dict) or not isinstance(data.get("key"), list):
        raise InvalidCursorError
    return data
