"""Quote conversion for deep replies.

Threads are at most three levels deep (0, 1, 2). A reply that would land on
level 3 is stored as a level 2 reply under the nearest level 1 ancestor, and
its content is prefixed with a short quote of the comment the user actually
replied to.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.comments.exceptions import ParentResolutionError
from src.comments.models import MAX_LEVEL, Comment, QuoteData


if TYPE_CHECKING:
    from src.users.models import UserProfile


logger = structlog.get_logger(__name__)

CommentLoader = Callable[[UUID], Awaitable[Comment | None]]

DEFAULT_QUOTE_LENGTH = 50
UNKNOWN_USERNAME = "Unknown User"

# Word boundary is only used when it keeps at least this share of the window
_WORD_BREAK_RATIO = 0.7
_ELLIPSIS = "..."


def truncate(text: object, max_length: int = DEFAULT_QUOTE_LENGTH) -> str:
    """Shorten text to ``max_length`` characters, ending in "..." when cut.

    Whitespace is collapsed first. The cut prefers the last space inside the
    final 30% of the window and otherwise falls at ``max_length - 3``.
    """
    if not isinstance(text, str) or not text:
        return ""

    clean = " ".join(text.split())
    if len(clean) <= max_length:
        return clean

    cut_at = max_length - len(_ELLIPSIS)
    last_space = clean.rfind(" ", 0, cut_at)
    if last_space > max_length * _WORD_BREAK_RATIO:
        cut_at = last_space

    return clean[:cut_at] + _ELLIPSIS


def format_with_quote(username: str | None, quoted_text: str | None, new_content: str) -> str:
    """Render '"@username: quoted_text"', a blank line, then the new content."""
    if not username or not quoted_text:
        return new_content or ""

    quote_line = f'"@{username}: {quoted_text}"'
    content = new_content.strip() if isinstance(new_content, str) else ""
    if not content:
        return quote_line
    return f"{quote_line}\n\n{content}"


class QuoteConverter:
    """Decides when a reply is flattened and builds its quote."""

    def __init__(self, max_length: int = DEFAULT_QUOTE_LENGTH):
        self.max_length = max_length

    def should_convert(self, target_level: int, parent: Comment | None) -> bool:
        """True when the reply would be stored deeper than level 2."""
        if target_level > MAX_LEVEL:
            return True
        return parent is not None and parent.level >= MAX_LEVEL

    def truncate(self, text: object) -> str:
        return truncate(text, self.max_length)

    def build_quote(
        self, parent: Comment, parent_author: "UserProfile | None" = None
    ) -> QuoteData:
        """Capture the quoted comment's author, text and id."""
        username = (
            (parent_author.name if parent_author else None)
            or parent.author_name
            or UNKNOWN_USERNAME
        )
        return QuoteData(
            quoted_comment_id=parent.comment_id,
            quoted_username=username,
            quoted_text=self.truncate(parent.content_original),
            quoted_full_text=parent.content_original,
            is_level_conversion=True,
        )

    def format_with_quote(self, quote: QuoteData, new_content: str) -> str:
        return format_with_quote(quote.quoted_username, quote.quoted_text, new_content)

    async def resolve_reply_parent(
        self, original_parent: Comment, load: CommentLoader
    ) -> Comment:
        """Find the level 1 ancestor that becomes the stored parent.

        Level 0 and level 1 comments are valid parents as they are. For deeper
        comments the ``parent_id`` chain is followed, falling back to the level 1
        id recorded in the materialized path.

        Raises:
            ParentResolutionError: No level 1 ancestor exists.
        """
        if original_parent.level <= 1:
            return original_parent

        current = original_parent
        # A valid chain reaches level 1 in at most MAX_LEVEL steps
        for _ in range(MAX_LEVEL):
            if current.parent_id is None:
                break
            ancestor = await load(current.parent_id)
            if ancestor is None:
                break
            if ancestor.level == 1:
                return ancestor
            current = ancestor

        path_ids = original_parent.path_ids
        if len(path_ids) > 1:
            candidate = await load(UUID(path_ids[1]))
            if candidate is not None and candidate.level == 1:
                return candidate

        logger.error(
            "reply_parent_resolution_failed",
            comment_id=str(original_parent.comment_id),
            root_id=str(original_parent.root_id),
            path=original_parent.path,
        )
        raise ParentResolutionError
