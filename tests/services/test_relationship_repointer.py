"""Tests for moving edges and files between entities."""

import pytest
import pytest_asyncio

from services.relationship_repointer import RelationshipRepointer, RepointResult


@pytest.fixture
def repointer(session):
    return RelationshipRepointer(session)


@pytest_asyncio.fixture
async def trio(graph):
    """Source, target and an unrelated third entity."""
    source = await graph.add_entity("Jean D.")
    target = await graph.add_entity("Jean Dupont")
    other = await graph.add_entity("Marie Curie")
    return source, target, other


def edge_tuples(edges):
    return sorted((e.from_entity, e.to_entity, e.type) for e in edges)


class TestRepointRelationships:
    """Rewriting both endpoints of edges touching the source."""

    @pytest.mark.asyncio
    async def test_rewrites_both_directions(self, repointer, session, graph, trio):
        source, target, other = trio
        await graph.add_relationship(source, other, "knows")
        await graph.add_relationship(other, source, "employs")

        counts = await repointer.repoint_relationships(source, target)
        await session.commit()

        assert counts == (1, 1)
        assert edge_tuples(await graph.relationships()) == sorted(
            [(target, other, "knows"), (other, target, "employs")]
        )

    @pytest.mark.asyncio
    async def test_untouched_edges_are_left_alone(self, repointer, session, graph, trio):
        source, target, other = trio
        unrelated = await graph.add_relationship(target, other, "knows")

        counts = await repointer.repoint_relationships(source, target)
        await session.commit()

        assert counts == (0, 0)
        assert [e.id for e in await graph.relationships()] == [unrelated]


class TestSelfLoopsAndDuplicates:
    """Collapsing what repointing made collide."""

    @pytest.mark.asyncio
    async def test_edge_between_pair_becomes_self_loop_and_is_removed(
        self, repointer, session, graph, trio
    ):
        source, target, _ = trio
        await graph.add_relationship(source, target, "knows")

        await repointer.repoint_relationships(source, target)
        removed = await repointer.remove_self_loops(target)
        await session.commit()

        assert removed == 1
        assert await graph.relationships() == []

    @pytest.mark.asyncio
    async def test_duplicates_keep_lowest_id(self, repointer, session, graph, trio):
        """The kept row's metadata survives, the dropped row's is lost."""
        source, target, other = trio
        kept = await graph.add_relationship(target, other, "knows", description="kept")
        await graph.add_relationship(source, other, "knows", description="dropped")

        await repointer.repoint_relationships(source, target)
        removed = await repointer.dedupe_relationships(target)
        await session.commit()

        edges = await graph.relationships()
        assert removed == 1
        assert [(e.id, e.description) for e in edges] == [(kept, "kept")]

    @pytest.mark.asyncio
    async def test_same_pair_different_type_is_not_a_duplicate(
        self, repointer, session, graph, trio
    ):
        source, target, other = trio
        await graph.add_relationship(target, other, "knows")
        await graph.add_relationship(source, other, "employs")

        await repointer.repoint_relationships(source, target)
        removed = await repointer.dedupe_relationships(target)
        await session.commit()

        assert removed == 0
        assert len(await graph.relationships()) == 2

    @pytest.mark.asyncio
    async def test_opposite_directions_are_not_duplicates(
        self, repointer, session, graph, trio
    ):
        source, target, other = trio
        await graph.add_relationship(target, other, "knows")
        await graph.add_relationship(other, source, "knows")

        await repointer.repoint_relationships(source, target)
        removed = await repointer.dedupe_relationships(target)
        await session.commit()

        assert removed == 0

    @pytest.mark.asyncio
    async def test_scoped_dedupe_ignores_other_entities(self, repointer, session, graph, trio):
        source, target, other = trio
        third = await graph.add_entity("Alice Martin")
        await graph.add_relationship(other, third, "knows")
        await graph.add_relationship(other, third, "knows")

        scoped = await repointer.dedupe_relationships(target)
        unscoped = await repointer.dedupe_relationships()
        await session.commit()

        assert scoped == 0
        assert unscoped == 1


class TestFiles:
    @pytest.mark.asyncio
    async def test_files_move_to_target(self, repointer, session, graph, trio):
        source, target, _ = trio
        await graph.add_file(source, "passport.pdf")
        await graph.add_file(source, "photo.jpg")
        await graph.add_file(target, "photo.jpg")

        moved = await repointer.repoint_files(source, target)
        await session.commit()

        files = await graph.files()
        assert moved == 2
        # Same filename twice is fine: files are never de-duplicated
        assert [f.entity_id for f in files] == [target, target, target]

    @pytest.mark.asyncio
    async def test_delete_links_of_entity(self, repointer, session, graph, trio):
        source, target, other = trio
        await graph.add_relationship(source, other)
        await graph.add_relationship(other, source)
        await graph.add_relationship(target, other)
        await graph.add_file(source)

        edges = await repointer.delete_relationships_of(source)
        files = await repointer.delete_files_of(source)
        await session.commit()

        assert (edges, files) == (2, 1)
        assert edge_tuples(await graph.relationships()) == [(target, other, "connected")]


class TestTransfer:
    @pytest.mark.asyncio
    async def test_full_transfer(self, repointer, session, graph, trio):
        source, target, other = trio
        await graph.add_relationship(target, other, "knows")
        await graph.add_relationship(source, other, "knows")
        await graph.add_relationship(source, target, "knows")
        await graph.add_relationship(other, source, "employs")
        await graph.add_file(source)

        result = await repointer.transfer(source, target)
        await session.commit()

        assert result == RepointResult(
            from_repointed=2,
            to_repointed=1,
            self_loops_removed=1,
            duplicates_removed=1,
            files_repointed=1,
        )
        assert result.relationships_repointed == 3
        assert edge_tuples(await graph.relationships()) == sorted(
            [(target, other, "knows"), (other, target, "employs")]
        )
