"""Tests for the EntityMergeService facade."""

import pytest

from models.errors import NotFoundError
from models.schemas import MergeOptions
from models.tables import Entity
from services.entity_merge import EntityMergeService, get_entity_merge_service
from services.entity_store import EntityStore


class TestDetectDuplicates:
    @pytest.mark.asyncio
    async def test_type_mismatch_excluded_from_cluster(self, merge_service, graph):
        """A(person), B(person), C(place) sharing an email -> one cluster {A, B}."""
        a = await graph.add_entity("A", folder_id=7, attributes={"email": "a@x.com"})
        b = await graph.add_entity("B", folder_id=7, attributes={"email": "a@x.com"})
        await graph.add_entity("C", folder_id=7, entity_type="place", attributes={"email": "a@x.com"})

        clusters = await merge_service.detect_duplicates(7, min_score=60)

        assert len(clusters) == 1
        assert clusters[0].member_ids == [a, b]

    @pytest.mark.asyncio
    async def test_scan_is_limited_to_the_folder(self, merge_service, graph):
        await graph.add_entity("A", folder_id=1, attributes={"email": "a@x.com"})
        await graph.add_entity("B", folder_id=2, attributes={"email": "a@x.com"})

        assert await merge_service.detect_duplicates(1) == []

    @pytest.mark.asyncio
    async def test_default_threshold_comes_from_settings(self, store, settings, graph):
        await graph.add_entity("A", attributes={"url": "https://x.com"})
        await graph.add_entity("B", attributes={"url": "https://x.com/"})

        settings.duplicate_min_score = 30
        lenient = await EntityMergeService(store, settings).detect_duplicates(1)
        settings.duplicate_min_score = 60
        strict = await EntityMergeService(store, settings).detect_duplicates(1)

        assert len(lenient) == 1
        assert lenient[0].score == 30
        assert strict == []


class TestFindMergeCandidates:
    @pytest.mark.asyncio
    async def test_ranked_by_confidence(self, merge_service, graph):
        entity = await graph.add_entity("Jean Dupont", attributes={"email": "jd@x.com"})
        twin = await graph.add_entity("Jean Dupont", attributes={"email": "jd@x.com"})
        close = await graph.add_entity("Jean Dupond", attributes={"email": "jd@x.com"})
        await graph.add_entity("Marie Curie", entity_type="place")
        await graph.add_entity("Jean Dupont", folder_id=2, attributes={"email": "jd@x.com"})

        candidates = await merge_service.find_merge_candidates(entity)

        assert [c.entity.id for c in candidates] == [twin, close]
        assert candidates[0].confidence == 1.0
        assert candidates[0].raw_score == 70
        assert all(c.confidence >= 0.5 for c in candidates)

    @pytest.mark.asyncio
    async def test_limit_and_threshold(self, merge_service, graph):
        entity = await graph.add_entity("Jean Dupont")
        await graph.add_entity("Jean Dupont")
        await graph.add_entity("Jean Dupond")

        assert len(await merge_service.find_merge_candidates(entity, limit=1)) == 1
        assert await merge_service.find_merge_candidates(entity, min_similarity=1.01) == []

    @pytest.mark.asyncio
    async def test_unknown_entity(self, merge_service):
        with pytest.raises(NotFoundError):
            await merge_service.find_merge_candidates(999)


class TestFacade:
    @pytest.mark.asyncio
    async def test_analyze_then_preview_then_merge(self, merge_service, graph):
        target = await graph.add_entity("Jean", attributes={"email": "jd@x.com"})
        source = await graph.add_entity("Jean Dupont", attributes={"email": "JD@x.com"})

        report = await merge_service.analyze(source, target)
        preview = await merge_service.preview_merge(target, [source])
        merged = await merge_service.merge(target, [source])

        assert report.compatible
        assert preview.name == merged.name == "Jean Dupont"
        assert merged.attributes["merged_from"] == [str(source)]
        assert await graph.entity(source) is None

    @pytest.mark.asyncio
    async def test_factory_binds_session(self, session, settings):
        service = get_entity_merge_service(session, settings)

        assert isinstance(service.store, EntityStore)
        assert service.store.session is session
        assert service.coordinator.store is service.store
        assert service.settings is settings


class TestCallerTransaction:
    """Services run inside a transaction the caller already has open."""

    @pytest.mark.asyncio
    async def test_detect_duplicates_keeps_pending_writes(self, merge_service, session, graph):
        await graph.add_entity("A")
        session.add(Entity(folder_id=1, type="person", name="Pending", attributes={}))
        await session.flush()

        await merge_service.detect_duplicates(1)
        await session.commit()

        assert [e.name for e in await graph.entities()] == ["A", "Pending"]

    @pytest.mark.asyncio
    async def test_merge_leaves_commit_to_the_caller(self, merge_service, session, graph):
        target = await graph.add_entity("Jean", attributes={"email": "jd@x.com"})
        source = await graph.add_entity("Jean Dupont", attributes={"email": "jd@x.com"})
        session.add(Entity(folder_id=1, type="person", name="Pending", attributes={}))
        await session.flush()

        await merge_service.merge(target, [source])

        assert session.in_transaction()
        await session.commit()
        assert [e.name for e in await graph.entities()] == ["Jean Dupont", "Pending"]

    @pytest.mark.asyncio
    async def test_failed_merge_keeps_pending_writes(self, merge_service, session, graph):
        target = await graph.add_entity("Jean")
        session.add(Entity(folder_id=1, type="person", name="Pending", attributes={}))
        await session.flush()

        with pytest.raises(NotFoundError):
            await merge_service.merge(target, [999], MergeOptions(strict_sources=True))
        await session.commit()

        assert [e.name for e in await graph.entities()] == ["Jean", "Pending"]
