"""Placement of new comments in the thread tree."""

from dataclasses import dataclass
from uuid import UUID

import structlog

from src.comments.exceptions import HierarchyDepthError, ParentNotFoundError
from src.comments.models import MAX_LEVEL, Comment, build_path
from src.comments.quotes import CommentLoader, QuoteConverter


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HierarchyPlacement:
    """Where a new comment goes.

    ``parent`` is the stored parent. ``replied_to`` is the comment the user
    actually answered; the two differ only for converted replies.
    """

    level: int
    root_id: UUID
    path: str
    parent: Comment | None = None
    replied_to: Comment | None = None
    converted: bool = False

    @property
    def parent_id(self) -> UUID | None:
        return self.parent.comment_id if self.parent else None


class HierarchyEngine:
    """Assigns level, root id and path to new comments."""

    def __init__(self, converter: QuoteConverter):
        self.converter = converter

    async def place(
        self, comment_id: UUID, parent_id: UUID | None, load: CommentLoader
    ) -> HierarchyPlacement:
        """Compute the placement of ``comment_id`` as a reply to ``parent_id``.

        Raises:
            ParentNotFoundError: ``parent_id`` does not exist.
            ParentResolutionError: A deep reply has no level 1 ancestor.
            HierarchyDepthError: The computed level exceeds the maximum.
        """
        if parent_id is None:
            return HierarchyPlacement(
                level=0, root_id=comment_id, path=build_path(None, comment_id)
            )

        replied_to = await load(parent_id)
        if replied_to is None:
            raise ParentNotFoundError

        target_level = replied_to.level + 1
        parent = replied_to
        converted = self.converter.should_convert(target_level, replied_to)
        if converted:
            parent = await self.converter.resolve_reply_parent(replied_to, load)

        level = parent.level + 1
        if level > MAX_LEVEL:
            logger.error(
                "hierarchy_depth_violation",
                comment_id=str(comment_id),
                parent_id=str(parent.comment_id),
                level=level,
            )
            raise HierarchyDepthError(level)

        return HierarchyPlacement(
            level=level,
            root_id=parent.root_id or parent.comment_id,
            path=build_path(parent.path, comment_id),
            parent=parent,
            replied_to=replied_to,
            converted=converted,
        )
