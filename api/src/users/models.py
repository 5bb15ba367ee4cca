"""Database models for user profiles consumed by the comment system.

Tables:
- user_profiles: display data and role, keyed by user id
- users_by_username: lookup used to resolve @mentions
- user_comment_stats: counter of comments written by each user
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID


USER_PROFILES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.user_profiles (
    user_id UUID PRIMARY KEY,
    username TEXT,
    display_name TEXT,
    avatar_url TEXT,
    role TEXT
)
"""

USERS_BY_USERNAME_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users_by_username (
    username TEXT PRIMARY KEY,
    user_id UUID
)
"""

USER_COMMENT_STATS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.user_comment_stats (
    user_id UUID PRIMARY KEY,
    comment_count COUNTER
)
"""

USERS_TABLES_CQL = [
    USER_PROFILES_TABLE_CQL,
    USERS_BY_USERNAME_TABLE_CQL,
    USER_COMMENT_STATS_TABLE_CQL,
]


@dataclass
class UserProfile:
    """Public profile of a user."""

    user_id: UUID
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    role: str = "user"

    @property
    def name(self) -> str:
        """Name shown next to comments and in quotes."""
        return self.display_name or self.username

    @classmethod
    def from_row(cls, row: Any) -> "UserProfile":
        """Create UserProfile from Cassandra row."""
        return cls(
            user_id=row.user_id,
            username=row.username,
            display_name=row.display_name,
            avatar_url=row.avatar_url,
            role=row.role or "user",
        )
