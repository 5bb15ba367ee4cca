# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Comment counters for stories and chapters."""

from typing import TYPE_CHECKING
from uuid import UUID


if TYPE_CHECKING:
    from cassandra.cluster import Session


class _CommentCounterStore:
    """Counter table keyed by a single id column."""

    table: str
    key_column: str

    def __init__(self, session: "Session", keyspace: str):
        self.session = session
        self.keyspace = keyspace
        self._update_count = self.session.prepare(f"""
            UPDATE {self.keyspace}.{self.table}
            SET comment_count = comment_count + ?
            WHERE {self.key_column} = ?
        """)

    async def increment_comment_count(self, target_id: UUID, delta: int = 1) -> None:
        """Adjust the comment counter of a story or chapter."""
        await self.session.aexecute(self._update_count, [delta, target_id])


class StoryStore(_CommentCounterStore):
    """Comment statistics per story."""

    table = "story_comment_stats"
    key_column = "story_id"


class ChapterStore(_CommentCounterStore):
    """Comment statistics per chapter."""

    table = "chapter_comment_stats"
    key_column = "chapter_id"
