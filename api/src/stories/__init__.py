"""Story and chapter statistics consumed by the comment system."""

from src.stories.models import STORIES_TABLES_CQL
from src.stories.service import ChapterStore, StoryStore


__all__ = [
    "STORIES_TABLES_CQL",
    "ChapterStore",
    "StoryStore",
]
