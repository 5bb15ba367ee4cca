"""Counter tables for story and chapter comment statistics."""

STORY_COMMENT_STATS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.story_comment_stats (
    story_id UUID PRIMARY KEY,
    comment_count COUNTER
)
"""

CHAPTER_COMMENT_STATS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.chapter_comment_stats (
    chapter_id UUID PRIMARY KEY,
    comment_count COUNTER
)
"""

STORIES_TABLES_CQL = [
    STORY_COMMENT_STATS_TABLE_CQL,
    CHAPTER_COMMENT_STATS_TABLE_CQL,
]
