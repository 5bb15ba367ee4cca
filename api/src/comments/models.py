"""Database models for the hierarchical comment system.

Cassandra table definitions for:
- comments_by_id: the full comment document, the only copy of mutable state
- comments_by_root: materialized path index for subtree queries
- comments_by_target: listing per story or chapter, roots and replies apart
- comments_by_status: moderation queue and auto-moderation scans
- comments_by_resolution: reported comments grouped by report state

Architecture: bounded-depth tree with a materialized path
- Level 0 comments are roots, replies are level 1 and 2. Deeper replies are
  rewritten as quoted level 2 replies before they are stored.
- ``path`` is "/<root>/.../<self>/" so a subtree is a prefix match inside
  the root's partition.
- Likes, dislikes and reply ids are Cassandra sets so engagement updates are
  single-row atomic mutations.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID


MAX_LEVEL = 2

# Upper bound for path prefix range scans
PATH_RANGE_END = "\uffff"

STORY_CHAPTER_KEY = "story"


class CommentStatus(str, Enum):
    """Moderation status of a comment."""

    ACTIVE = "active"
    PENDING = "pending"
    HIDDEN = "hidden"
    DELETED = "deleted"
    SPAM = "spam"


class TargetType(str, Enum):
    """What a comment is attached to."""

    STORY = "story"
    CHAPTER = "chapter"


class ReactionAction(str, Enum):
    """Reaction changes a user can make."""

    LIKE = "like"
    DISLIKE = "dislike"
    REMOVE = "remove"


class FlagReason(str, Enum):
    """Reasons for reporting a comment."""

    SPAM = "spam"
    INAPPROPRIATE = "inappropriate"
    HARASSMENT = "harassment"
    OFF_TOPIC = "off-topic"
    OTHER = "other"


class ResolutionStatus(str, Enum):
    """State of the reports filed against a comment."""

    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"


class ResolutionAction(str, Enum):
    """Actions an admin can take when resolving a report."""

    NONE = "none"
    WARNING = "warning"
    CONTENT_HIDDEN = "content-hidden"
    CONTENT_DELETED = "content-deleted"
    USER_SUSPENDED = "user-suspended"
    USER_BANNED = "user-banned"
    ESCALATE = "escalate"


class ModerationAction(str, Enum):
    """Manual moderation actions and the status they lead to."""

    APPROVE = "approve"
    HIDE = "hide"
    DELETE = "delete"
    SPAM = "spam"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

COMMENTS_BY_ID_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_id (
    comment_id UUID PRIMARY KEY,
    author_id UUID,
    author_name TEXT,
    author_avatar TEXT,
    story_id UUID,
    chapter_id UUID,
    target_type TEXT,
    content_original TEXT,
    content_sanitized TEXT,
    mentions LIST<TEXT>,
    quoted_comment_id UUID,
    quoted_username TEXT,
    quoted_text TEXT,
    quoted_full_text TEXT,
    is_level_conversion BOOLEAN,
    parent_id UUID,
    level INT,
    root_id UUID,
    path TEXT,
    likes SET<UUID>,
    dislikes SET<UUID>,
    reply_ids SET<UUID>,
    last_reply_at TIMESTAMP,
    score DOUBLE,
    status TEXT,
    flagged_by MAP<UUID, FROZEN<MAP<TEXT, TEXT>>>,
    flag_reasons SET<TEXT>,
    resolution_status TEXT,
    resolved_by UUID,
    resolved_at TIMESTAMP,
    resolution_reason TEXT,
    admin_notes TEXT,
    action_taken TEXT,
    spam_score DOUBLE,
    toxicity_score DOUBLE,
    checked_at TIMESTAMP,
    moderated_by UUID,
    moderated_at TIMESTAMP,
    moderation_reason TEXT,
    ip_hash TEXT,
    user_agent_hash TEXT,
    edit_history LIST<FROZEN<MAP<TEXT, TEXT>>>,
    chapter_position INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Materialized path index: subtree = path range inside the root partition
COMMENTS_BY_ROOT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_root (
    root_id UUID,
    path TEXT,
    comment_id UUID,
    PRIMARY KEY ((root_id), path)
)
"""

# Listing per story (chapter_key = 'story') or per chapter. Roots and replies
# live in separate partitions so root listings page by clustering range.
COMMENTS_BY_TARGET_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_target (
    story_id UUID,
    chapter_key TEXT,
    is_root BOOLEAN,
    created_at TIMESTAMP,
    comment_id UUID,
    PRIMARY KEY ((story_id, chapter_key, is_root), created_at, comment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, comment_id DESC)
"""

COMMENTS_BY_STATUS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_status (
    status TEXT,
    created_at TIMESTAMP,
    comment_id UUID,
    PRIMARY KEY ((status), created_at, comment_id)
) WITH CLUSTERING ORDER BY (created_at DESC, comment_id ASC)
"""

COMMENTS_BY_RESOLUTION_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.comments_by_resolution (
    resolution_status TEXT,
    comment_id UUID,
    PRIMARY KEY ((resolution_status), comment_id)
)
"""

COMMENTS_TABLES_CQL = [
    COMMENTS_BY_ID_TABLE_CQL,
    COMMENTS_BY_ROOT_TABLE_CQL,
    COMMENTS_BY_TARGET_TABLE_CQL,
    COMMENTS_BY_STATUS_TABLE_CQL,
    COMMENTS_BY_RESOLUTION_TABLE_CQL,
]


# ==============================================================================
# Helpers
# ==============================================================================


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    # Cassandra returns naive UTC timestamps
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


def build_path(parent_path: str | None, comment_id: UUID) -> str:
    """Append a comment id to its parent's path ("/" for roots)."""
    return f"{parent_path or '/'}{comment_id}/"


# ==============================================================================
# Value Objects
# ==============================================================================


@dataclass
class CommentTarget:
    """Story or chapter a comment belongs to."""

    story_id: UUID
    chapter_id: UUID | None = None
    type: TargetType = TargetType.STORY

    @property
    def chapter_key(self) -> str:
        """Partition component of the listing table."""
        if self.type == TargetType.CHAPTER and self.chapter_id:
            return str(self.chapter_id)
        return STORY_CHAPTER_KEY


@dataclass
class QuoteData:
    """Quote synthesized when a deep reply is flattened to level 2."""

    quoted_comment_id: UUID
    quoted_username: str
    quoted_text: str
    quoted_full_text: str
    is_level_conversion: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "quoted_comment_id": str(self.quoted_comment_id),
            "quoted_username": self.quoted_username,
            "quoted_text": self.quoted_text,
            "quoted_full_text": self.quoted_full_text,
            "is_level_conversion": self.is_level_conversion,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuoteData":
        return cls(
            quoted_comment_id=UUID(data["quoted_comment_id"]),
            quoted_username=data["quoted_username"],
            quoted_text=data["quoted_text"],
            quoted_full_text=data["quoted_full_text"],
            is_level_conversion=data.get("is_level_conversion", True),
        )


@dataclass
class FlagEntry:
    """A single report filed against a comment."""

    user_id: UUID
    reason: str
    description: str | None
    flagged_at: datetime

    def to_column(self) -> dict[str, str]:
        """Value stored in the flagged_by map."""
        return {
            "reason": self.reason,
            "description": self.description or "",
            "flagged_at": self.flagged_at.isoformat(),
        }

    @classmethod
    def from_column(cls, user_id: UUID, value: dict[str, str]) -> "FlagEntry":
        return cls(
            user_id=user_id,
            reason=value.get("reason", FlagReason.OTHER.value),
            description=value.get("description") or None,
            flagged_at=_parse_dt(value.get("flagged_at")) or datetime.now(UTC),
        )


@dataclass
class ReportResolution:
    """Outcome of the reports filed against a comment."""

    status: ResolutionStatus | None = None
    resolved_by: UUID | None = None
    resolved_at: datetime | None = None
    reason: str | None = None
    admin_notes: str | None = None
    action_taken: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value if self.status else None,
            "resolved_by": str(self.resolved_by) if self.resolved_by else None,
            "resolved_at": _iso(self.resolved_at),
            "reason": self.reason,
            "admin_notes": self.admin_notes,
            "action_taken": self.action_taken,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReportResolution":
        return cls(
            status=ResolutionStatus(data["status"]) if data.get("status") else None,
            resolved_by=_uuid(data.get("resolved_by")),
            resolved_at=_parse_dt(data.get("resolved_at")),
            reason=data.get("reason"),
            admin_notes=data.get("admin_notes"),
            action_taken=data.get("action_taken"),
        )


@dataclass
class EditHistoryEntry:
    """Previous content of an edited comment."""

    content: str
    edited_at: datetime
    edit_reason: str | None = None

    def to_column(self) -> dict[str, str]:
        return {
            "content": self.content,
            "edited_at": self.edited_at.isoformat(),
            "edit_reason": self.edit_reason or "",
        }

    @classmethod
    def from_column(cls, value: dict[str, str]) -> "EditHistoryEntry":
        return cls(
            content=value.get("content", ""),
            edited_at=_parse_dt(value.get("edited_at")) or datetime.now(UTC),
            edit_reason=value.get("edit_reason") or None,
        )


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Comment:
    """Comment entity with hierarchy, engagement and moderation state."""

    comment_id: UUID
    author_id: UUID
    author_name: str
    target: CommentTarget
    content_original: str
    content_sanitized: str
    level: int
    root_id: UUID
    path: str
    created_at: datetime
    updated_at: datetime
    author_avatar: str | None = None
    mentions: list[str] = field(default_factory=list)
    quote: QuoteData | None = None
    parent_id: UUID | None = None
    likes: set[UUID] = field(default_factory=set)
    dislikes: set[UUID] = field(default_factory=set)
    reply_ids: set[UUID] = field(default_factory=set)
    last_reply_at: datetime | None = None
    score: float = 0.0
    status: CommentStatus = CommentStatus.ACTIVE
    flags: list[FlagEntry] = field(default_factory=list)
    resolution: ReportResolution = field(default_factory=ReportResolution)
    spam_score: float = 0.0
    toxicity_score: float = 0.0
    checked_at: datetime | None = None
    moderated_by: UUID | None = None
    moderated_at: datetime | None = None
    moderation_reason: str | None = None
    ip_hash: str | None = None
    user_agent_hash: str | None = None
    edit_history: list[EditHistoryEntry] = field(default_factory=list)
    chapter_position: int | None = None

    # Engagement -------------------------------------------------------------

    @property
    def like_count(self) -> int:
        return len(self.likes)

    @property
    def dislike_count(self) -> int:
        return len(self.dislikes)

    @property
    def reply_count(self) -> int:
        """Denormalized number of direct replies registered on this comment."""
        return len(self.reply_ids)

    def reaction_of(self, user_id: UUID | None) -> ReactionAction | None:
        """Current reaction of a user, if any."""
        if user_id is None:
            return None
        if user_id in self.likes:
            return ReactionAction.LIKE
        if user_id in self.dislikes:
            return ReactionAction.DISLIKE
        return None

    # Moderation -------------------------------------------------------------

    @property
    def flag_count(self) -> int:
        return len(self.flags)

    @property
    def flag_reasons(self) -> list[str]:
        """Distinct flag reasons in the order they were first reported."""
        return list(dict.fromkeys(flag.reason for flag in self.flags))

    @property
    def flagged_by(self) -> list[UUID]:
        return [flag.user_id for flag in self.flags]

    def is_flagged_by(self, user_id: UUID) -> bool:
        return any(flag.user_id == user_id for flag in self.flags)

    @property
    def is_active(self) -> bool:
        return self.status == CommentStatus.ACTIVE

    # Content and hierarchy --------------------------------------------------

    @property
    def is_edited(self) -> bool:
        return bool(self.edit_history)

    @property
    def is_root(self) -> bool:
        return self.level == 0

    @property
    def path_ids(self) -> list[str]:
        """Ancestor ids from the root down to this comment."""
        return [segment for segment in self.path.split("/") if segment]

    # Serialization ----------------------------------------------------------

    @classmethod
    def from_row(cls, row: Any) -> "Comment":
        """Create Comment from a comments_by_id row."""
        quote = None
        if row.quoted_comment_id:
            quote = QuoteData(
                quoted_comment_id=row.quoted_comment_id,
                quoted_username=row.quoted_username or "",
                quoted_text=row.quoted_text or "",
                quoted_full_text=row.quoted_full_text or "",
                is_level_conversion=bool(row.is_level_conversion),
            )

        flags = [
            FlagEntry.from_column(user_id, dict(value))
            for user_id, value in (row.flagged_by or {}).items()
        ]
        flags.sort(key=lambda flag: flag.flagged_at)

        return cls(
            comment_id=row.comment_id,
            author_id=row.author_id,
            author_name=row.author_name or "Unknown User",
            author_avatar=row.author_avatar,
            target=CommentTarget(
                story_id=row.story_id,
                chapter_id=row.chapter_id,
                type=TargetType(row.target_type or TargetType.STORY.value),
            ),
            content_original=row.content_original or "",
            content_sanitized=row.content_sanitized or "",
            mentions=list(row.mentions or []),
            quote=quote,
            parent_id=row.parent_id,
            level=row.level or 0,
            root_id=row.root_id,
            path=row.path,
            likes=set(row.likes or ()),
            dislikes=set(row.dislikes or ()),
            reply_ids=set(row.reply_ids or ()),
            last_reply_at=_parse_dt(row.last_reply_at),
            score=row.score or 0.0,
            status=CommentStatus(row.status or CommentStatus.ACTIVE.value),
            flags=flags,
            resolution=ReportResolution(
                status=ResolutionStatus(row.resolution_status)
                if row.resolution_status
                else None,
                resolved_by=row.resolved_by,
                resolved_at=_parse_dt(row.resolved_at),
                reason=row.resolution_reason,
                admin_notes=row.admin_notes,
                action_taken=row.action_taken,
            ),
            spam_score=row.spam_score or 0.0,
            toxicity_score=row.toxicity_score or 0.0,
            checked_at=_parse_dt(row.checked_at),
            moderated_by=row.moderated_by,
            moderated_at=_parse_dt(row.moderated_at),
            moderation_reason=row.moderation_reason,
            ip_hash=row.ip_hash,
            user_agent_hash=row.user_agent_hash,
            edit_history=[
                EditHistoryEntry.from_column(dict(entry))
                for entry in (row.edit_history or [])
            ],
            chapter_position=row.chapter_position,
            created_at=_parse_dt(row.created_at),
            updated_at=_parse_dt(row.updated_at or row.created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary (cache format)."""
        return {
            "comment_id": str(self.comment_id),
            "author_id": str(self.author_id),
            "author_name": self.author_name,
            "author_avatar": self.author_avatar,
            "target": {
                "story_id": str(self.target.story_id),
                "chapter_id": str(self.target.chapter_id)
                if self.target.chapter_id
                else None,
                "type": self.target.type.value,
            },
            "content_original": self.content_original,
            "content_sanitized": self.content_sanitized,
            "mentions": self.mentions,
            "quote": self.quote.to_dict() if self.quote else None,
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "level": self.level,
            "root_id": str(self.root_id),
            "path": self.path,
            "likes": sorted(str(user_id) for user_id in self.likes),
            "dislikes": sorted(str(user_id) for user_id in self.dislikes),
            "reply_ids": sorted(str(reply_id) for reply_id in self.reply_ids),
            "last_reply_at": _iso(self.last_reply_at),
            "score": self.score,
            "status": self.status.value,
            "flags": [
                {"user_id": str(flag.user_id), **flag.to_column()}
                for flag in self.flags
            ],
            "resolution": self.resolution.to_dict(),
            "spam_score": self.spam_score,
            "toxicity_score": self.toxicity_score,
            "checked_at": _iso(self.checked_at),
            "moderated_by": str(self.moderated_by) if self.moderated_by else None,
            "moderated_at": _iso(self.moderated_at),
            "moderation_reason": self.moderation_reason,
            "ip_hash": self.ip_hash,
            "user_agent_hash": self.user_agent_hash,
            "edit_history": [entry.to_column() for entry in self.edit_history],
            "chapter_position": self.chapter_position,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comment":
        """Rebuild a Comment from ``to_dict`` output."""
        target = data["target"]
        return cls(
            comment_id=UUID(data["comment_id"]),
            author_id=UUID(data["author_id"]),
            author_name=data["author_name"],
            author_avatar=data.get("author_avatar"),
            target=CommentTarget(
                story_id=UUID(target["story_id"]),
                chapter_id=_uuid(target.get("chapter_id")),
                type=TargetType(target["type"]),
            ),
            content_original=data["content_original"],
            content_sanitized=data["content_sanitized"],
            mentions=list(data.get("mentions") or []),
            quote=QuoteData.from_dict(data["quote"]) if data.get("quote") else None,
            parent_id=_uuid(data.get("parent_id")),
            level=data["level"],
            root_id=UUID(data["root_id"]),
            path=data["path"],
            likes={UUID(user_id) for user_id in data.get("likes", [])},
            dislikes={UUID(user_id) for user_id in data.get("dislikes", [])},
            reply_ids={UUID(reply_id) for reply_id in data.get("reply_ids", [])},
            last_reply_at=_parse_dt(data.get("last_reply_at")),
            score=data.get("score", 0.0),
            status=CommentStatus(data["status"]),
            flags=[
                FlagEntry.from_column(UUID(flag["user_id"]), flag)
                for flag in data.get("flags", [])
            ],
            resolution=ReportResolution.from_dict(data.get("resolution") or {}),
            spam_score=data.get("spam_score", 0.0),
            toxicity_score=data.get("toxicity_score", 0.0),
            checked_at=_parse_dt(data.get("checked_at")),
            moderated_by=_uuid(data.get("moderated_by")),
            moderated_at=_parse_dt(data.get("moderated_at")),
            moderation_reason=data.get("moderation_reason"),
            ip_hash=data.get("ip_hash"),
            user_agent_hash=data.get("user_agent_hash"),
            edit_history=[
                EditHistoryEntry.from_column(entry)
                for entry in data.get("edit_history", [])
            ],
            chapter_position=data.get("chapter_position"),
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
        )

    def audit_snapshot(self) -> dict[str, Any]:
        """Pre-deletion record kept in the moderator audit log."""
        return {
            "comment_id": str(self.comment_id),
            "author_id": str(self.author_id),
            "author_name": self.author_name,
            "content": self.content_original,
            "target": {
                "story_id": str(self.target.story_id),
                "chapter_id": str(self.target.chapter_id)
                if self.target.chapter_id
                else None,
                "type": self.target.type.value,
            },
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "level": self.level,
            "status": self.status.value,
            "flag_count": self.flag_count,
            "created_at": self.created_at.isoformat(),
        }


# ==============================================================================
# Factory Functions
# ==============================================================================


def create_comment(
    comment_id: UUID,
    author_id: UUID,
    author_name: str,
    target: CommentTarget,
    content_original: str,
    content_sanitized: str,
    level: int,
    root_id: UUID,
    path: str,
    parent_id: UUID | None = None,
    mentions: list[str] | None = None,
    quote: QuoteData | None = None,
    author_avatar: str | None = None,
    ip_hash: str | None = None,
    user_agent_hash: str | None = None,
    chapter_position: int | None = None,
) -> Comment:
    """Create a new active comment with default engagement and moderation state."""
    now = datetime.now(UTC)
    return Comment(
        comment_id=comment_id,
        author_id=author_id,
        author_name=author_name,
        author_avatar=author_avatar,
        target=target,
        content_original=content_original,
        content_sanitized=content_sanitized,
        mentions=mentions or [],
        quote=quote,
        parent_id=parent_id,
        level=level,
        root_id=root_id,
        path=path,
        ip_hash=ip_hash,
        user_agent_hash=user_agent_hash,
        chapter_position=chapter_position,
        created_at=now,
        updated_at=now,
    )
