"""Tests for the moderation engine."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from src.comments.exceptions import (
    AlreadyFlaggedError,
    CommentNotFoundError,
    InvalidActionError,
    InvalidTransitionError,
    NoReportsError,
    SelfFlagNotAllowedError,
)
from src.comments.models import (
    Comment,
    CommentStatus,
    CommentTarget,
    FlagEntry,
    ResolutionAction,
    ResolutionStatus,
    build_path,
)
from src.comments.moderation import (
    ModerationConfig,
    ModerationEngine,
    calculate_spam_score,
    calculate_toxicity_score,
    can_transition,
)


SPAM_TEXT = "Click here for free money at www.example.com or http://example.com"


async def stored_comment(
    repository,
    content: str = "Lovely pacing in this chapter",
    status: CommentStatus = CommentStatus.ACTIVE,
    created_at: datetime | None = None,
    author_id: UUID | None = None,
) -> Comment:
    comment_id = uuid4()
    now = created_at or datetime.now(UTC)
    comment = Comment(
        comment_id=comment_id,
        author_id=author_id or uuid4(),
        author_name="Reader",
        target=CommentTarget(story_id=uuid4()),
        content_original=content,
        content_sanitized=content,
        level=0,
        root_id=comment_id,
        path=build_path(None, comment_id),
        status=status,
        created_at=now,
        updated_at=now,
    )
    await repository.insert(comment)
    return comment


async def add_flags(repository, comment: Comment, count: int) -> None:
    for _ in range(count):
        await repository.add_flag(
            comment.comment_id,
            FlagEntry(
                user_id=uuid4(),
                reason="spam",
                description=None,
                flagged_at=datetime.now(UTC),
            ),
        )


class TestSpamScore:
    """Tests for calculate_spam_score."""

    def test_plain_text_scores_zero(self) -> None:
        assert calculate_spam_score("I really enjoyed this chapter") == 0.0

    def test_each_pattern_adds(self) -> None:
        assert calculate_spam_score("click here please, it is a nice story") == 0.2

    def test_many_patterns(self) -> None:
        assert calculate_spam_score(SPAM_TEXT) >= 0.7

    def test_short_text_with_url(self) -> None:
        """Short text with a link is heavily penalized."""
        assert calculate_spam_score("http://x") >= 0.6

    def test_clamped_to_one(self) -> None:
        text = "CLICK HERE FREE MONEY MAKE MONEY VISIT MY WEBSITE WWW.X HTTP://X!!!!!!"
        assert calculate_spam_score(text) == 1.0

    @pytest.mark.parametrize("value", [None, "", 5])
    def test_empty_or_non_text(self, value: object) -> None:
        assert calculate_spam_score(value) == 0.0


class TestToxicityScore:
    """Tests for calculate_toxicity_score."""

    def test_clean_text(self) -> None:
        assert calculate_toxicity_score("What a thoughtful ending") == 0.0

    def test_toxic_term_matches_whole_word(self) -> None:
        assert calculate_toxicity_score("đồ ngu") > 0.0
        # Substring inside a word is not a match
        assert calculate_toxicity_score("nguyên văn") == 0.0

    def test_aggressive_punctuation(self) -> None:
        assert calculate_toxicity_score("Why???") == 0.1

    def test_clamped(self) -> None:
        assert calculate_toxicity_score("ngu " * 10) == 1.0

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value: object) -> None:
        assert calculate_toxicity_score(value) == 0.0


class TestCanTransition:
    """Tests for the status state machine."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (CommentStatus.ACTIVE, CommentStatus.PENDING),
            (CommentStatus.ACTIVE, CommentStatus.SPAM),
            (CommentStatus.PENDING, CommentStatus.ACTIVE),
            (CommentStatus.PENDING, CommentStatus.DELETED),
        ],
    )
    def test_automatic_allowed(self, current: CommentStatus, target: CommentStatus) -> None:
        assert can_transition(current, target) is True

    @pytest.mark.parametrize(
        "current",
        [CommentStatus.HIDDEN, CommentStatus.DELETED, CommentStatus.SPAM],
    )
    def test_automatic_from_removed_denied(self, current: CommentStatus) -> None:
        assert can_transition(current, CommentStatus.ACTIVE) is False

    def test_manual_always_allowed(self) -> None:
        assert can_transition(CommentStatus.DELETED, CommentStatus.ACTIVE, manual=True)


class TestAnalyzeComment:
    """Tests for ModerationEngine.analyze_comment."""

    @pytest.mark.asyncio
    async def test_benign_comment_stays_active(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        comment = await stored_comment(repository)

        result = await moderation_engine.analyze_comment(comment)

        assert result.status == CommentStatus.ACTIVE
        stored = await repository.get(comment.comment_id)
        assert stored.checked_at is not None
        assert stored.spam_score == 0.0

    @pytest.mark.asyncio
    async def test_spammy_comment_held_for_review(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        comment = await stored_comment(repository, content=SPAM_TEXT)

        result = await moderation_engine.analyze_comment(comment)

        assert result.status == CommentStatus.PENDING
        stored = await repository.get(comment.comment_id)
        assert stored.status == CommentStatus.PENDING
        assert stored.moderated_by is None
        assert stored.moderation_reason.startswith("Auto-flagged")

    @pytest.mark.asyncio
    async def test_analysis_does_not_touch_removed_comment(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        comment = await stored_comment(
            repository, content=SPAM_TEXT, status=CommentStatus.HIDDEN
        )

        result = await moderation_engine.analyze_comment(comment)

        assert result.status == CommentStatus.HIDDEN


class TestModerateComment:
    """Tests for manual moderation."""

    @pytest.mark.asyncio
    async def test_hide_records_moderator_and_audit(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        comment = await stored_comment(repository)

        result = await moderation_engine.moderate_comment(
            comment.comment_id, admin_id, "hide", reason="Off topic"
        )

        assert result.old_status == CommentStatus.ACTIVE
        assert result.new_status == CommentStatus.HIDDEN
        stored = await repository.get(comment.comment_id)
        assert stored.status == CommentStatus.HIDDEN
        assert stored.moderated_by == admin_id
        assert stored.moderation_reason == "Off topic"
        admin_notifications.log_admin_action.assert_awaited_once()
        assert admin_notifications.log_admin_action.await_args.kwargs["action"] == (
            "moderate_comment"
        )

    @pytest.mark.asyncio
    async def test_approve_restores_removed_comment(
        self, moderation_engine: ModerationEngine, repository, admin_id: UUID
    ) -> None:
        comment = await stored_comment(repository, status=CommentStatus.SPAM)

        result = await moderation_engine.moderate_comment(
            comment.comment_id, admin_id, "approve"
        )

        assert result.new_status == CommentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_action(
        self, moderation_engine: ModerationEngine, repository, admin_id: UUID
    ) -> None:
        comment = await stored_comment(repository)

        with pytest.raises(InvalidActionError):
            await moderation_engine.moderate_comment(comment.comment_id, admin_id, "ban")

    @pytest.mark.asyncio
    async def test_missing_comment(
        self, moderation_engine: ModerationEngine, admin_id: UUID
    ) -> None:
        with pytest.raises(CommentNotFoundError):
            await moderation_engine.moderate_comment(uuid4(), admin_id, "hide")

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_moderation(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        admin_notifications.log_admin_action.side_effect = RuntimeError("audit down")
        comment = await stored_comment(repository)

        result = await moderation_engine.moderate_comment(
            comment.comment_id, admin_id, "hide"
        )

        assert result.new_status == CommentStatus.HIDDEN

    @pytest.mark.asyncio
    async def test_automatic_transition_from_removed_rejected(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        comment = await stored_comment(repository, status=CommentStatus.DELETED)

        with pytest.raises(InvalidTransitionError):
            await moderation_engine.transition(comment, CommentStatus.ACTIVE)


class TestBulkModerate:
    """Tests for bulk moderation."""

    @pytest.mark.asyncio
    async def test_collects_failures(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        first = await stored_comment(repository)
        second = await stored_comment(repository)
        missing = uuid4()

        result = await moderation_engine.bulk_moderate(
            [first.comment_id, missing, second.comment_id], admin_id, "spam"
        )

        assert [item.comment_id for item in result.successful] == [
            first.comment_id,
            second.comment_id,
        ]
        assert result.failed == [{"id": str(missing), "error": "Comment not found"}]
        assert result.total_processed == 3
        # One audit entry for the whole batch
        admin_notifications.log_admin_action.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_abort_batch(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        first = await stored_comment(repository)
        second = await stored_comment(repository)
        update_status = repository.update_status

        async def flaky_update(comment, *args, **kwargs):
            if comment.comment_id == first.comment_id:
                raise RuntimeError("db timeout")
            return await update_status(comment, *args, **kwargs)

        repository.update_status = flaky_update
        moderation_engine.cache.clear_all = AsyncMock()

        result = await moderation_engine.bulk_moderate(
            [first.comment_id, second.comment_id], admin_id, "hide"
        )

        assert [item.comment_id for item in result.successful] == [second.comment_id]
        assert result.failed == [{"id": str(first.comment_id), "error": "Unexpected error"}]
        assert repository.comments[second.comment_id].status == CommentStatus.HIDDEN
        admin_notifications.log_admin_action.assert_awaited_once()
        moderation_engine.cache.clear_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_action_rejected_up_front(
        self, moderation_engine: ModerationEngine, admin_id: UUID
    ) -> None:
        with pytest.raises(InvalidActionError):
            await moderation_engine.bulk_moderate([uuid4()], admin_id, "nuke")


class TestAutoModeration:
    """Tests for the auto-moderation sweep."""

    @pytest.mark.asyncio
    async def test_rules_in_priority_order(
        self, moderation_engine: ModerationEngine, repository, admin_id: UUID
    ) -> None:
        """Spam wins over toxicity, which wins over flags."""
        spam = await stored_comment(repository)
        toxic = await stored_comment(repository)
        flagged = await stored_comment(repository)
        clean = await stored_comment(repository)
        for comment, spam_score, toxicity in (
            (spam, 0.9, 0.9),
            (toxic, 0.1, 0.85),
            (flagged, 0.0, 0.0),
            (clean, 0.1, 0.1),
        ):
            await repository.save_analysis(
                comment.comment_id, spam_score, toxicity, datetime.now(UTC)
            )
        await add_flags(repository, spam, 6)
        await add_flags(repository, flagged, 5)

        results = await moderation_engine.auto_moderation(moderator_id=admin_id)

        actions = {item["comment_id"]: item["action"] for item in results}
        assert actions == {
            str(spam.comment_id): "spam",
            str(toxic.comment_id): "hidden",
            str(flagged.comment_id): "pending",
        }
        assert (await repository.get(clean.comment_id)).status == CommentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_limit_prefers_most_flagged(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        few = await stored_comment(repository)
        many = await stored_comment(repository)
        await add_flags(repository, few, 5)
        await add_flags(repository, many, 7)

        results = await moderation_engine.auto_moderation(limit=1)

        assert [item["comment_id"] for item in results] == [str(many.comment_id)]

    @pytest.mark.asyncio
    async def test_custom_thresholds(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        comment = await stored_comment(repository)
        await repository.save_analysis(comment.comment_id, 0.5, 0.0, datetime.now(UTC))

        results = await moderation_engine.auto_moderation(spam_threshold=0.5)

        assert results[0]["action"] == "spam"


class TestFlags:
    """Tests for flags and report resolution."""

    @pytest.mark.asyncio
    async def test_flag_opens_report(
        self, moderation_engine: ModerationEngine, repository, reader_id: UUID
    ) -> None:
        comment = await stored_comment(repository)

        flagged = await moderation_engine.add_flag(
            comment.comment_id, reader_id, "spam", "Advertising"
        )

        assert flagged.flag_count == 1
        assert flagged.status == CommentStatus.ACTIVE
        stored = await repository.get(comment.comment_id)
        assert stored.resolution.status == ResolutionStatus.PENDING
        assert stored.flags[0].description == "Advertising"

    @pytest.mark.asyncio
    async def test_cannot_flag_own_comment(
        self, moderation_engine: ModerationEngine, repository, author_id: UUID
    ) -> None:
        comment = await stored_comment(repository, author_id=author_id)

        with pytest.raises(SelfFlagNotAllowedError):
            await moderation_engine.add_flag(comment.comment_id, author_id, "spam")

    @pytest.mark.asyncio
    async def test_cannot_flag_twice(
        self, moderation_engine: ModerationEngine, repository, reader_id: UUID
    ) -> None:
        comment = await stored_comment(repository)
        await moderation_engine.add_flag(comment.comment_id, reader_id, "spam")

        with pytest.raises(AlreadyFlaggedError):
            await moderation_engine.add_flag(comment.comment_id, reader_id, "other")

    @pytest.mark.asyncio
    async def test_resolve_with_content_hidden(
        self,
        moderation_engine: ModerationEngine,
        repository,
        reader_id: UUID,
        admin_id: UUID,
    ) -> None:
        comment = await stored_comment(repository)
        await moderation_engine.add_flag(comment.comment_id, reader_id, "harassment")

        resolved = await moderation_engine.resolve_report(
            comment.comment_id,
            admin_id,
            ResolutionAction.CONTENT_HIDDEN,
            reason="Harassment",
            admin_notes="Second report this week",
        )

        assert resolved.status == CommentStatus.HIDDEN
        stored = await repository.get(comment.comment_id)
        assert stored.resolution.status == ResolutionStatus.RESOLVED
        assert stored.resolution.action_taken == "content-hidden"
        assert stored.resolution.resolved_by == admin_id
        assert stored.resolution.admin_notes == "Second report this week"

    @pytest.mark.asyncio
    async def test_escalate_keeps_status(
        self,
        moderation_engine: ModerationEngine,
        repository,
        reader_id: UUID,
        admin_id: UUID,
    ) -> None:
        comment = await stored_comment(repository)
        await moderation_engine.add_flag(comment.comment_id, reader_id, "other")

        resolved = await moderation_engine.resolve_report(
            comment.comment_id, admin_id, ResolutionAction.ESCALATE
        )

        assert resolved.status == CommentStatus.ACTIVE
        assert resolved.resolution.status == ResolutionStatus.ESCALATED

    @pytest.mark.asyncio
    async def test_dismiss(
        self,
        moderation_engine: ModerationEngine,
        repository,
        reader_id: UUID,
        admin_id: UUID,
    ) -> None:
        comment = await stored_comment(repository)
        await moderation_engine.add_flag(comment.comment_id, reader_id, "other")

        dismissed = await moderation_engine.dismiss_report(
            comment.comment_id, admin_id, reason="Not a violation"
        )

        assert dismissed.status == CommentStatus.ACTIVE
        assert dismissed.resolution.status == ResolutionStatus.DISMISSED
        assert dismissed.resolution.action_taken == "none"

    @pytest.mark.asyncio
    async def test_resolve_without_reports(
        self, moderation_engine: ModerationEngine, repository, admin_id: UUID
    ) -> None:
        comment = await stored_comment(repository)

        with pytest.raises(NoReportsError):
            await moderation_engine.resolve_report(
                comment.comment_id, admin_id, ResolutionAction.WARNING
            )
        with pytest.raises(NoReportsError):
            await moderation_engine.dismiss_report(comment.comment_id, admin_id)


class TestHardDelete:
    """Tests for permanent deletion."""

    @pytest.mark.asyncio
    async def test_snapshot_written_before_delete(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        comment = await stored_comment(repository)

        snapshot = await moderation_engine.hard_delete_comment(
            comment.comment_id, admin_id, reason="Illegal content"
        )

        assert await repository.get(comment.comment_id) is None
        assert snapshot["comment_id"] == str(comment.comment_id)
        details = admin_notifications.log_admin_action.await_args.kwargs["details"]
        assert details["snapshot"] == snapshot
        assert details["reason"] == "Illegal content"

    @pytest.mark.asyncio
    async def test_audit_failure_aborts_delete(
        self,
        moderation_engine: ModerationEngine,
        repository,
        admin_notifications: AsyncMock,
        admin_id: UUID,
    ) -> None:
        admin_notifications.log_admin_action.side_effect = RuntimeError("audit down")
        comment = await stored_comment(repository)

        with pytest.raises(RuntimeError):
            await moderation_engine.hard_delete_comment(comment.comment_id, admin_id)

        assert await repository.get(comment.comment_id) is not None


class TestQueues:
    """Tests for queues and statistics."""

    @pytest.mark.asyncio
    async def test_queue_most_flagged_first(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        older = await stored_comment(
            repository,
            status=CommentStatus.PENDING,
            created_at=datetime.now(UTC) - timedelta(hours=2),
        )
        newer = await stored_comment(repository, status=CommentStatus.PENDING)
        await add_flags(repository, older, 2)
        await stored_comment(repository)

        items, total = await moderation_engine.get_moderation_queue(limit=10)

        assert total == 2
        assert [c.comment_id for c in items] == [older.comment_id, newer.comment_id]

    @pytest.mark.asyncio
    async def test_queue_pagination(
        self, moderation_engine: ModerationEngine, repository
    ) -> None:
        for _ in range(3):
            await stored_comment(repository, status=CommentStatus.PENDING)

        items, total = await moderation_engine.get_moderation_queue(limit=2, skip=2)

        assert total == 3
        assert len(items) == 1

    @pytest.mark.asyncio
    async def test_reported_comments(
        self, moderation_engine: ModerationEngine, repository, reader_id: UUID
    ) -> None:
        reported = await stored_comment(repository)
        await stored_comment(repository)
        await moderation_engine.add_flag(reported.comment_id, reader_id, "spam")

        items, total = await moderation_engine.get_reported_comments()

        assert total == 1
        assert items[0].comment_id == reported.comment_id

    @pytest.mark.asyncio
    async def test_stats(
        self, moderation_engine: ModerationEngine, repository, reader_id: UUID
    ) -> None:
        active = await stored_comment(repository)
        await stored_comment(repository, status=CommentStatus.SPAM)
        await moderation_engine.add_flag(active.comment_id, reader_id, "spam")
        await repository.save_analysis(active.comment_id, 0.4, 0.2, datetime.now(UTC))

        stats = await moderation_engine.get_moderation_stats()

        assert stats.status_counts["active"] == 1
        assert stats.status_counts["spam"] == 1
        assert stats.status_counts["pending"] == 0
        assert stats.flagged_count == 1
        assert stats.avg_spam_score == 0.4
        assert stats.avg_toxicity_score == 0.2


class TestModerationConfig:
    def test_defaults(self) -> None:
        config = ModerationConfig()
        assert config.pending_threshold == 0.7
        assert config.flag_threshold == 5
