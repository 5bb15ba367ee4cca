"""Tests for hierarchy placement of new comments."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest

from src.comments.exceptions import ParentNotFoundError, ParentResolutionError
from src.comments.hierarchy import HierarchyEngine
from src.comments.models import Comment, CommentTarget, build_path
from src.comments.quotes import QuoteConverter


class Tree:
    """Minimal comment store keyed by id."""

    def __init__(self) -> None:
        self.comments: dict[UUID, Comment] = {}
        self.target = CommentTarget(story_id=uuid4())

    def add(self, parent: Comment | None = None, level: int | None = None) -> Comment:
        comment_id = uuid4()
        now = datetime.now(UTC)
        comment = Comment(
            comment_id=comment_id,
            author_id=uuid4(),
            author_name="Reader",
            target=self.target,
            content_original="text",
            content_sanitized="text",
            level=level if level is not None else (parent.level + 1 if parent else 0),
            root_id=parent.root_id if parent else comment_id,
            path=build_path(parent.path if parent else None, comment_id),
            parent_id=parent.comment_id if parent else None,
            created_at=now,
            updated_at=now,
        )
        self.comments[comment_id] = comment
        return comment

    async def load(self, comment_id: UUID) -> Comment | None:
        return self.comments.get(comment_id)


@pytest.fixture
def engine() -> HierarchyEngine:
    return HierarchyEngine(QuoteConverter())


@pytest.fixture
def tree() -> Tree:
    return Tree()


class TestPlace:
    """Tests for HierarchyEngine.place."""

    @pytest.mark.asyncio
    async def test_root_comment(self, engine: HierarchyEngine, tree: Tree) -> None:
        """A comment without parent is its own root at level 0."""
        comment_id = uuid4()

        placement = await engine.place(comment_id, None, tree.load)

        assert placement.level == 0
        assert placement.root_id == comment_id
        assert placement.path == f"/{comment_id}/"
        assert placement.parent is None
        assert placement.converted is False

    @pytest.mark.asyncio
    async def test_reply_to_root(self, engine: HierarchyEngine, tree: Tree) -> None:
        root = tree.add()
        comment_id = uuid4()

        placement = await engine.place(comment_id, root.comment_id, tree.load)

        assert placement.level == 1
        assert placement.root_id == root.comment_id
        assert placement.path == f"/{root.comment_id}/{comment_id}/"
        assert placement.parent_id == root.comment_id
        assert placement.converted is False

    @pytest.mark.asyncio
    async def test_reply_to_level_one(self, engine: HierarchyEngine, tree: Tree) -> None:
        root = tree.add()
        child = tree.add(root)
        comment_id = uuid4()

        placement = await engine.place(comment_id, child.comment_id, tree.load)

        assert placement.level == 2
        assert placement.path == f"{child.path}{comment_id}/"
        assert placement.converted is False

    @pytest.mark.asyncio
    async def test_reply_to_level_two_is_flattened(
        self, engine: HierarchyEngine, tree: Tree
    ) -> None:
        """The stored parent becomes the level 1 ancestor."""
        root = tree.add()
        child = tree.add(root)
        grandchild = tree.add(child)
        comment_id = uuid4()

        placement = await engine.place(comment_id, grandchild.comment_id, tree.load)

        assert placement.level == 2
        assert placement.converted is True
        assert placement.parent_id == child.comment_id
        assert placement.replied_to is not None
        assert placement.replied_to.comment_id == grandchild.comment_id
        assert placement.path == f"{child.path}{comment_id}/"
        assert placement.root_id == root.comment_id

    @pytest.mark.asyncio
    async def test_missing_parent(self, engine: HierarchyEngine, tree: Tree) -> None:
        with pytest.raises(ParentNotFoundError):
            await engine.place(uuid4(), uuid4(), tree.load)

    @pytest.mark.asyncio
    async def test_corrupt_parent_level_rejected(
        self, engine: HierarchyEngine, tree: Tree
    ) -> None:
        """A deep reply whose ancestors have no level 1 comment is rejected."""
        root = tree.add()
        child = tree.add(root)
        broken = tree.add(child, level=3)
        # The level 1 ancestor itself claims level 2
        child.level = 2

        with pytest.raises(ParentResolutionError):
            await engine.place(uuid4(), broken.comment_id, tree.load)
