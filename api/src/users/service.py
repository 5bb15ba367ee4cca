# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""User store used by the comment system.

Reads user profiles, resolves @mentions to user ids and maintains the
per-user comment counter.
"""

from typing import TYPE_CHECKING
from uuid import UUID

from src.users.models import UserProfile


if TYPE_CHECKING:
    from cassandra.cluster import Session


class UserStore:
    """Profile lookups and comment statistics for users."""

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        self._get_profile = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.user_profiles WHERE user_id = ?
        """)

        self._get_by_username = self.session.prepare(f"""
            SELECT user_id FROM {self.keyspace}.users_by_username WHERE username = ?
        """)

        self._update_comment_count = self.session.prepare(f"""
            UPDATE {self.keyspace}.user_comment_stats
            SET comment_count = comment_count + ?
            WHERE user_id = ?
        """)

    async def get_user(self, user_id: UUID) -> UserProfile | None:
        """Get a user profile by id."""
        result = await self.session.aexecute(self._get_profile, [user_id])
        row = result.one()
        return UserProfile.from_row(row) if row else None

    async def get_users_by_usernames(self, usernames: list[str]) -> list[UserProfile]:
        """Resolve usernames to profiles, skipping unknown names."""
        profiles: list[UserProfile] = []
        seen: set[UUID] = set()
        for username in usernames:
            result = await self.session.aexecute(
                self._get_by_username, [username.lower()]
            )
            row = result.one()
            if not row or row.user_id in seen:
                continue
            profile = await self.get_user(row.user_id)
            if profile:
                seen.add(profile.user_id)
                profiles.append(profile)
        return profiles

    async def increment_comment_count(self, user_id: UUID, delta: int = 1) -> None:
        """Adjust the number of comments written by a user."""
        await self.session.aexecute(self._update_comment_count, [delta, user_id])
