"""Moderation engine.

Owns every change to ``Comment.status``:
- Heuristic spam and toxicity scoring on creation and on demand
- Manual moderation (single and bulk) by admins
- Threshold-driven auto-moderation sweeps
- Flags (user reports) and their resolution
- Irreversible hard deletion with an audit snapshot
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from src.comments.exceptions import (
    AlreadyFlaggedError,
    CommentError,
    CommentNotFoundError,
    InvalidActionError,
    InvalidTransitionError,
    NoReportsError,
    SelfFlagNotAllowedError,
)
from src.comments.models import (
    Comment,
    CommentStatus,
    FlagEntry,
    ModerationAction,
    ReportResolution,
    ResolutionAction,
    ResolutionStatus,
)
from src.core.effects import run_side_effect


if TYPE_CHECKING:
    from src.comments.cache import CommentCache
    from src.comments.repository import CommentRepository
    from src.config.settings import Settings
    from src.notifications.admin_service import AdminNotificationService


logger = structlog.get_logger(__name__)


# ==============================================================================
# Configuration
# ==============================================================================


@dataclass(frozen=True)
class ModerationConfig:
    """Thresholds used by analysis and auto-moderation."""

    pending_threshold: float = 0.7
    spam_threshold: float = 0.8
    toxicity_threshold: float = 0.8
    flag_threshold: int = 5
    auto_limit: int = 100
    scan_limit: int = 500

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ModerationConfig":
        return cls(
            pending_threshold=settings.moderation_pending_threshold,
            spam_threshold=settings.moderation_spam_threshold,
            toxicity_threshold=settings.moderation_toxicity_threshold,
            flag_threshold=settings.moderation_flag_threshold,
            auto_limit=settings.moderation_auto_limit,
            scan_limit=settings.comment_list_scan_limit,
        )


# ==============================================================================
# Heuristic Scoring
# ==============================================================================

CAPS_PATTERN = re.compile(r"[A-Z]")
SPECIAL_CHARS_PATTERN = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")
REPEATED_CHARS_PATTERN = re.compile(r"(.)\1{4,}")
URL_PATTERN = re.compile(r"https?://", re.IGNORECASE)
SPAM_PATTERNS = (
    re.compile(r"click\s+here", re.IGNORECASE),
    re.compile(r"free\s+money", re.IGNORECASE),
    re.compile(r"make\s+money", re.IGNORECASE),
    re.compile(r"visit\s+my\s+website", re.IGNORECASE),
    URL_PATTERN,
    re.compile(r"www\.", re.IGNORECASE),
)

TOXIC_TERMS = (
    "đm",
    "dm",
    "đmm",
    "dmm",
    "đcm",
    "dcm",
    "cc",
    "cặc",
    "lồn",
    "buồi",
    "chó",
    "súc vật",
    "ngu",
    "ngốc",
    "khùng",
    "điên",
    "óc chó",
    "thằng ngu",
    "con ngu",
    "đồ ngu",
    "đồ khùng",
)
TOXIC_PATTERNS = tuple(
    re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE) for term in TOXIC_TERMS
)
AGGRESSIVE_PUNCTUATION_PATTERN = re.compile(r"!{3,}|\?{3,}")
SHOUTING_PATTERN = re.compile(r"[A-Z]{4,}")

LONG_CONTENT_LENGTH = 1500
SHORT_CONTENT_LENGTH = 10


def _clamp(score: float) -> float:
    return round(min(max(score, 0.0), 1.0), 4)


def calculate_spam_score(content: object) -> float:
    """Spam likelihood in [0, 1]. Returns 0 for empty or non-text input."""
    if not isinstance(content, str) or not content:
        return 0.0

    length = len(content)
    score = 0.0

    if len(CAPS_PATTERN.findall(content)) / length > 0.7:
        score += 0.3
    if len(SPECIAL_CHARS_PATTERN.findall(content)) / length > 0.5:
        score += 0.3
    if REPEATED_CHARS_PATTERN.search(content):
        score += 0.2

    score += 0.2 * sum(1 for pattern in SPAM_PATTERNS if pattern.search(content))

    if length > LONG_CONTENT_LENGTH:
        score += 0.1
    if length < SHORT_CONTENT_LENGTH and URL_PATTERN.search(content):
        score += 0.4

    return _clamp(score)


def calculate_toxicity_score(content: object) -> float:
    """Toxicity likelihood in [0, 1]. Returns 0 for empty or non-text input."""
    if not isinstance(content, str) or not content:
        return 0.0

    score = 0.0
    for pattern in TOXIC_PATTERNS:
        score += 0.2 * len(pattern.findall(content))

    if AGGRESSIVE_PUNCTUATION_PATTERN.search(content):
        score += 0.1
    if len(SHOUTING_PATTERN.findall(content)) > 2:
        score += 0.2

    return _clamp(score)


# ==============================================================================
# State Machine
# ==============================================================================

AUTOMATIC_TRANSITIONS: dict[CommentStatus, frozenset[CommentStatus]] = {
    CommentStatus.ACTIVE: frozenset(
        {
            CommentStatus.HIDDEN,
            CommentStatus.DELETED,
            CommentStatus.SPAM,
            CommentStatus.PENDING,
        }
    ),
    CommentStatus.PENDING: frozenset(
        {
            CommentStatus.ACTIVE,
            CommentStatus.HIDDEN,
            CommentStatus.DELETED,
            CommentStatus.SPAM,
        }
    ),
}

ACTION_STATUS: dict[ModerationAction, CommentStatus] = {
    ModerationAction.APPROVE: CommentStatus.ACTIVE,
    ModerationAction.HIDE: CommentStatus.HIDDEN,
    ModerationAction.DELETE: CommentStatus.DELETED,
    ModerationAction.SPAM: CommentStatus.SPAM,
}

RESOLUTION_STATUS_CHANGES: dict[ResolutionAction, CommentStatus] = {
    ResolutionAction.CONTENT_HIDDEN: CommentStatus.HIDDEN,
    ResolutionAction.CONTENT_DELETED: CommentStatus.DELETED,
}


def can_transition(
    current: CommentStatus, target: CommentStatus, manual: bool = False
) -> bool:
    """Whether ``current -> target`` is allowed.

    Admin (manual) actions may move a comment out of any state. Automatic
    transitions start only from ``active`` or ``pending``.
    """
    if manual:
        return True
    return target in AUTOMATIC_TRANSITIONS.get(current, frozenset())


def parse_action(action: str | ModerationAction) -> ModerationAction:
    try:
        return ModerationAction(action)
    except ValueError as e:
        raise InvalidActionError(str(action)) from e


# ==============================================================================
# Results
# ==============================================================================


@dataclass(frozen=True)
class AnalysisResult:
    spam_score: float
    toxicity_score: float
    status: CommentStatus
    checked_at: datetime


@dataclass(frozen=True)
class ModerationResult:
    comment_id: UUID
    old_status: CommentStatus
    new_status: CommentStatus
    action: str
    reason: str | None = None


@dataclass
class BulkModerationResult:
    successful: list[ModerationResult] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.successful) + len(self.failed)


@dataclass
class ModerationStats:
    status_counts: dict[str, int] = field(default_factory=dict)
    flagged_count: int = 0
    avg_spam_score: float = 0.0
    avg_toxicity_score: float = 0.0


# ==============================================================================
# Moderation Engine
# ==============================================================================


class ModerationEngine:
    """Spam/toxicity analysis, flags and status transitions."""

    def __init__(
        self,
        repository: "CommentRepository",
        admin_notifications: "AdminNotificationService",
        config: ModerationConfig | None = None,
        cache: "CommentCache | None" = None,
    ):
        self.repository = repository
        self.admin_notifications = admin_notifications
        self.config = config or ModerationConfig()
        self.cache = cache

    async def _get_comment(self, comment_id: UUID) -> Comment:
        comment = await self.repository.get(comment_id)
        if comment is None:
            raise CommentNotFoundError
        return comment

    # ==========================================================================
    # Status transitions
    # ==========================================================================

    async def transition(
        self,
        comment: Comment,
        target: CommentStatus,
        moderator_id: UUID | None = None,
        reason: str | None = None,
        manual: bool = False,
    ) -> CommentStatus:
        """Move a comment to ``target`` and return its previous status.

        Raises:
            InvalidTransitionError: The move is not allowed.
        """
        old_status = comment.status
        if not can_transition(old_status, target, manual=manual):
            raise InvalidTransitionError(old_status.value, target.value)

        now = datetime.now(UTC)
        await self.repository.update_status(comment, target, moderator_id, now, reason)

        comment.status = target
        comment.moderated_by = moderator_id
        comment.moderated_at = now
        comment.moderation_reason = reason
        comment.updated_at = now

        logger.info(
            "comment_status_changed",
            comment_id=str(comment.comment_id),
            old_status=old_status.value,
            new_status=target.value,
            moderator_id=str(moderator_id) if moderator_id else None,
            manual=manual,
        )
        return old_status

    # ==========================================================================
    # Analysis
    # ==========================================================================

    async def analyze_comment(self, comment: Comment) -> AnalysisResult:
        """Score a comment and hold it for review when either score is high."""
        content = comment.content_original
        spam_score = calculate_spam_score(content)
        toxicity_score = calculate_toxicity_score(content)
        checked_at = datetime.now(UTC)

        await self.repository.save_analysis(
            comment.comment_id, spam_score, toxicity_score, checked_at
        )
        comment.spam_score = spam_score
        comment.toxicity_score = toxicity_score
        comment.checked_at = checked_at

        threshold = self.config.pending_threshold
        if (
            spam_score >= threshold or toxicity_score >= threshold
        ) and comment.status == CommentStatus.ACTIVE:
            await self.transition(
                comment,
                CommentStatus.PENDING,
                reason=f"Auto-flagged (spam: {spam_score}, toxicity: {toxicity_score})",
            )

        logger.info(
            "comment_analyzed",
            comment_id=str(comment.comment_id),
            spam_score=spam_score,
            toxicity_score=toxicity_score,
            status=comment.status.value,
        )
        return AnalysisResult(
            spam_score=spam_score,
            toxicity_score=toxicity_score,
            status=comment.status,
            checked_at=checked_at,
        )

    async def analyze_comment_by_id(self, comment_id: UUID) -> AnalysisResult:
        comment = await self._get_comment(comment_id)
        result = await self.analyze_comment(comment)
        await self._invalidate(comment)
        return result

    # ==========================================================================
    # Manual moderation
    # ==========================================================================

    async def moderate_comment(
        self,
        comment_id: UUID,
        moderator_id: UUID,
        action: str | ModerationAction,
        reason: str | None = None,
        audit: bool = True,
    ) -> ModerationResult:
        """Apply approve/hide/delete/spam to a comment.

        Raises:
            InvalidActionError: Unknown action.
            CommentNotFoundError: No such comment.
        """
        moderation_action = parse_action(action)
        comment = await self._get_comment(comment_id)
        new_status = ACTION_STATUS[moderation_action]

        old_status = await self.transition(
            comment, new_status, moderator_id=moderator_id, reason=reason, manual=True
        )
        result = ModerationResult(
            comment_id=comment_id,
            old_status=old_status,
            new_status=new_status,
            action=moderation_action.value,
            reason=reason,
        )

        if audit:
            await self._audit(
                moderator_id,
                "moderate_comment",
                comment_id,
                {
                    "action": moderation_action.value,
                    "old_status": old_status.value,
                    "new_status": new_status.value,
                    "reason": reason,
                },
            )
            await self._invalidate(comment)
        return result

    async def bulk_moderate(
        self,
        comment_ids: list[UUID],
        moderator_id: UUID,
        action: str | ModerationAction,
        reason: str | None = None,
    ) -> BulkModerationResult:
        """Moderate many comments, collecting per-id failures instead of stopping."""
        moderation_action = parse_action(action)
        result = BulkModerationResult()

        for comment_id in comment_ids:
            try:
                result.successful.append(
                    await self.moderate_comment(
                        comment_id, moderator_id, moderation_action, reason, audit=False
                    )
                )
            except CommentError as e:
                result.failed.append({"id": str(comment_id), "error": e.message})
            except Exception as e:
                logger.error(
                    "bulk_moderation_item_failed", comment_id=str(comment_id), error=str(e)
                )
                result.failed.append({"id": str(comment_id), "error": "Unexpected error"})

        await self._audit(
            moderator_id,
            "bulk_moderate",
            moderator_id,
            {
                "action": moderation_action.value,
                "reason": reason,
                "successful": [str(item.comment_id) for item in result.successful],
                "failed": result.failed,
            },
            target_type="comments",
        )
        await self._clear_cache()

        logger.info(
            "bulk_moderation_completed",
            action=moderation_action.value,
            successful=len(result.successful),
            failed=len(result.failed),
        )
        return result

    async def auto_moderation(
        self,
        moderator_id: UUID | None = None,
        spam_threshold: float | None = None,
        toxicity_threshold: float | None = None,
        flag_threshold: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Sweep active comments and apply the first matching rule.

        Rules in priority order: spam score -> ``spam``, toxicity score ->
        ``hidden``, flag count -> ``pending``.
        """
        spam_threshold = (
            self.config.spam_threshold if spam_threshold is None else spam_threshold
        )
        toxicity_threshold = (
            self.config.toxicity_threshold
            if toxicity_threshold is None
            else toxicity_threshold
        )
        flag_threshold = (
            self.config.flag_threshold if flag_threshold is None else flag_threshold
        )
        limit = self.config.auto_limit if limit is None else limit

        candidates = await self.repository.list_by_status(
            CommentStatus.ACTIVE, self.config.scan_limit
        )
        candidates.sort(
            key=lambda c: (c.flag_count, c.created_at.timestamp()), reverse=True
        )

        results: list[dict[str, Any]] = []
        for comment in candidates:
            if len(results) >= limit:
                break
            target, reason = self._auto_rule(
                comment, spam_threshold, toxicity_threshold, flag_threshold
            )
            if target is None:
                continue

            await self.transition(comment, target, moderator_id=moderator_id, reason=reason)
            results.append(
                {
                    "comment_id": str(comment.comment_id),
                    "action": target.value,
                    "reason": reason,
                    "spam_score": comment.spam_score,
                    "toxicity_score": comment.toxicity_score,
                    "flag_count": comment.flag_count,
                }
            )

        if moderator_id:
            await self._audit(
                moderator_id,
                "auto_moderate",
                moderator_id,
                {
                    "spam_threshold": spam_threshold,
                    "toxicity_threshold": toxicity_threshold,
                    "flag_threshold": flag_threshold,
                    "processed": len(results),
                },
                target_type="comments",
            )
        await self._clear_cache()

        logger.info("auto_moderation_completed", processed=len(results))
        return results

    @staticmethod
    def _auto_rule(
        comment: Comment,
        spam_threshold: float,
        toxicity_threshold: float,
        flag_threshold: int,
    ) -> tuple[CommentStatus | None, str | None]:
        if comment.spam_score >= spam_threshold:
            return CommentStatus.SPAM, f"Auto-detected spam (score: {comment.spam_score})"
        if comment.toxicity_score >= toxicity_threshold:
            return (
                CommentStatus.HIDDEN,
                f"Auto-detected toxic content (score: {comment.toxicity_score})",
            )
        if comment.flag_count >= flag_threshold:
            return (
                CommentStatus.PENDING,
                f"Multiple user reports ({comment.flag_count} flags)",
            )
        return None, None

    # ==========================================================================
    # Flags and reports
    # ==========================================================================

    async def add_flag(
        self,
        comment_id: UUID,
        user_id: UUID,
        reason: str,
        description: str | None = None,
    ) -> Comment:
        """Record a user report. Does not change the comment status.

        Raises:
            CommentNotFoundError: No such comment.
            SelfFlagNotAllowedError: The reporter wrote the comment.
            AlreadyFlaggedError: The reporter already flagged it.
        """
        comment = await self._get_comment(comment_id)
        if comment.author_id == user_id:
            raise SelfFlagNotAllowedError
        if comment.is_flagged_by(user_id):
            raise AlreadyFlaggedError

        flag = FlagEntry(
            user_id=user_id,
            reason=reason,
            description=description,
            flagged_at=datetime.now(UTC),
        )
        await self.repository.add_flag(comment_id, flag)

        if comment.resolution.status is None:
            await self.repository.update_resolution(
                comment, ReportResolution(status=ResolutionStatus.PENDING)
            )
            comment.resolution = ReportResolution(status=ResolutionStatus.PENDING)

        comment.flags.append(flag)

        logger.info(
            "comment_flagged",
            comment_id=str(comment_id),
            reason=reason,
            flag_count=comment.flag_count,
        )
        return comment

    async def resolve_report(
        self,
        comment_id: UUID,
        moderator_id: UUID,
        action: ResolutionAction,
        reason: str | None = None,
        admin_notes: str | None = None,
    ) -> Comment:
        """Resolve the reports on a comment, optionally hiding or deleting it.

        Raises:
            CommentNotFoundError: No such comment.
            NoReportsError: The comment was never flagged.
        """
        comment = await self._get_comment(comment_id)
        if comment.flag_count == 0:
            raise NoReportsError

        new_status = RESOLUTION_STATUS_CHANGES.get(action)
        if new_status is not None:
            await self.transition(
                comment, new_status, moderator_id=moderator_id, reason=reason, manual=True
            )

        resolution = ReportResolution(
            status=ResolutionStatus.ESCALATED
            if action == ResolutionAction.ESCALATE
            else ResolutionStatus.RESOLVED,
            resolved_by=moderator_id,
            resolved_at=datetime.now(UTC),
            reason=reason,
            admin_notes=admin_notes,
            action_taken=action.value,
        )
        await self._store_resolution(comment, resolution, moderator_id, "resolve_report")
        return comment

    async def dismiss_report(
        self,
        comment_id: UUID,
        moderator_id: UUID,
        reason: str | None = None,
        admin_notes: str | None = None,
    ) -> Comment:
        """Dismiss the reports on a comment without acting on it."""
        comment = await self._get_comment(comment_id)
        if comment.flag_count == 0:
            raise NoReportsError

        resolution = ReportResolution(
            status=ResolutionStatus.DISMISSED,
            resolved_by=moderator_id,
            resolved_at=datetime.now(UTC),
            reason=reason,
            admin_notes=admin_notes,
            action_taken=ResolutionAction.NONE.value,
        )
        await self._store_resolution(comment, resolution, moderator_id, "dismiss_report")
        return comment

    async def _store_resolution(
        self,
        comment: Comment,
        resolution: ReportResolution,
        moderator_id: UUID,
        audit_action: str,
    ) -> None:
        await self.repository.update_resolution(comment, resolution)
        comment.resolution = resolution

        await self._audit(
            moderator_id,
            audit_action,
            comment.comment_id,
            {
                "resolution": resolution.status.value if resolution.status else None,
                "action_taken": resolution.action_taken,
                "reason": resolution.reason,
                "flag_count": comment.flag_count,
            },
        )
        await self._invalidate(comment)

        logger.info(
            "report_resolved",
            comment_id=str(comment.comment_id),
            resolution=resolution.status.value if resolution.status else None,
            action_taken=resolution.action_taken,
        )

    # ==========================================================================
    # Hard delete
    # ==========================================================================

    async def hard_delete_comment(
        self, comment_id: UUID, moderator_id: UUID, reason: str | None = None
    ) -> dict[str, Any]:
        """Permanently remove a comment.

        The audit snapshot is written first; if that fails nothing is deleted.
        """
        comment = await self._get_comment(comment_id)
        snapshot = comment.audit_snapshot()

        await self.admin_notifications.log_admin_action(
            moderator_id=moderator_id,
            action="hard_delete_comment",
            target_type="comment",
            target_id=comment_id,
            details={"snapshot": snapshot, "reason": reason},
        )
        await self.repository.delete(comment)
        await self._clear_cache()

        logger.warning(
            "comment_permanently_deleted",
            comment_id=str(comment_id),
            moderator_id=str(moderator_id),
        )
        return snapshot

    # ==========================================================================
    # Queues and statistics
    # ==========================================================================

    @staticmethod
    def _by_flags_then_newest(comments: list[Comment]) -> list[Comment]:
        return sorted(
            comments,
            key=lambda c: (c.flag_count, c.created_at.timestamp()),
            reverse=True,
        )

    async def get_moderation_queue(
        self,
        status: CommentStatus = CommentStatus.PENDING,
        limit: int = 20,
        skip: int = 0,
    ) -> tuple[list[Comment], int]:
        """Comments in ``status``, most flagged first. Returns (page, total)."""
        comments = await self.repository.list_by_status(status, self.config.scan_limit)
        ordered = self._by_flags_then_newest(comments)
        return ordered[skip : skip + limit], len(ordered)

    async def get_reported_comments(
        self,
        resolution_status: ResolutionStatus = ResolutionStatus.PENDING,
        limit: int = 20,
        skip: int = 0,
    ) -> tuple[list[Comment], int]:
        """Flagged comments in a report state. Returns (page, total)."""
        comments = await self.repository.list_by_resolution(
            resolution_status.value, self.config.scan_limit
        )
        ordered = self._by_flags_then_newest(
            [comment for comment in comments if comment.flag_count > 0]
        )
        return ordered[skip : skip + limit], len(ordered)

    async def get_moderation_stats(self) -> ModerationStats:
        stats = ModerationStats()
        scanned: list[Comment] = []
        for status in CommentStatus:
            comments = await self.repository.list_by_status(
                status, self.config.scan_limit
            )
            stats.status_counts[status.value] = len(comments)
            scanned.extend(comments)

        stats.flagged_count = sum(1 for comment in scanned if comment.flag_count > 0)
        checked = [comment for comment in scanned if comment.checked_at is not None]
        if checked:
            stats.avg_spam_score = round(
                sum(c.spam_score for c in checked) / len(checked), 4
            )
            stats.avg_toxicity_score = round(
                sum(c.toxicity_score for c in checked) / len(checked), 4
            )
        return stats

    # ==========================================================================
    # Best-effort helpers
    # ==========================================================================

    async def _audit(
        self,
        moderator_id: UUID,
        action: str,
        target_id: UUID,
        details: dict[str, Any],
        target_type: str = "comment",
    ) -> None:
        await run_side_effect(
            "audit_log",
            self.admin_notifications.log_admin_action(
                moderator_id=moderator_id,
                action=action,
                target_type=target_type,
                target_id=target_id,
                details=details,
            ),
            action=action,
            target_id=str(target_id),
        )

    async def _invalidate(self, comment: Comment) -> None:
        if self.cache:
            await run_side_effect(
                "cache_invalidation",
                self.cache.invalidate_comment(comment),
                comment_id=str(comment.comment_id),
            )

    async def _clear_cache(self) -> None:
        if self.cache:
            await run_side_effect("cache_clear", self.cache.clear_all())
