"""Tests for the user, story and chapter stores."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest
from cassandra.cluster import Session

from src.stories.service import ChapterStore, StoryStore
from src.users.service import UserStore


def result(row) -> Mock:
    rows = Mock()
    rows.one.return_value = row
    return rows


def profile_row(user_id, username: str, display_name: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        user_id=user_id,
        username=username,
        display_name=display_name,
        avatar_url=None,
        role=None,
    )


@pytest.fixture
def mock_session():
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda query: Mock(query=" ".join(query.split())))
    session.aexecute = AsyncMock(return_value=result(None))
    return session


class TestUserStore:
    """Tests for UserStore."""

    @pytest.mark.asyncio
    async def test_get_user(self, mock_session) -> None:
        user_id = uuid4()
        mock_session.aexecute.return_value = result(profile_row(user_id, "bao", "Bao Tran"))

        profile = await UserStore(mock_session, "ks").get_user(user_id)

        assert profile.name == "Bao Tran"
        assert profile.role == "user"

    @pytest.mark.asyncio
    async def test_get_missing_user(self, mock_session) -> None:
        assert await UserStore(mock_session, "ks").get_user(uuid4()) is None

    @pytest.mark.asyncio
    async def test_resolve_usernames(self, mock_session) -> None:
        """Unknown names are skipped and a user is returned once."""
        user_id = uuid4()
        lookups = {
            "bao": result(SimpleNamespace(user_id=user_id)),
            "ghost": result(None),
        }

        async def execute(statement, params):
            if "users_by_username" in statement.query:
                return lookups[params[0]]
            return result(profile_row(user_id, "bao"))

        mock_session.aexecute.side_effect = execute

        profiles = await UserStore(mock_session, "ks").get_users_by_usernames(
            ["Bao", "ghost", "bao"]
        )

        assert [p.user_id for p in profiles] == [user_id]
        assert profiles[0].name == "bao"

    @pytest.mark.asyncio
    async def test_increment_comment_count(self, mock_session) -> None:
        user_id = uuid4()

        await UserStore(mock_session, "ks").increment_comment_count(user_id, -1)

        statement, params = mock_session.aexecute.await_args.args
        assert "user_comment_stats" in statement.query
        assert params == [-1, user_id]


class TestCounterStores:
    """Tests for the story and chapter counters."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "store_cls,table,column",
        [
            (StoryStore, "story_comment_stats", "story_id"),
            (ChapterStore, "chapter_comment_stats", "chapter_id"),
        ],
    )
    async def test_increment(self, mock_session, store_cls, table: str, column: str) -> None:
        target_id = uuid4()

        await store_cls(mock_session, "ks").increment_comment_count(target_id)

        statement, params = mock_session.aexecute.await_args.args
        assert f"UPDATE ks.{table}" in statement.query
        assert f"WHERE {column} = ?" in statement.query
        assert params == [1, target_id]
