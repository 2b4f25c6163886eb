"""Entity deduplication and merge operations.

Entry point for callers (REST handlers, jobs, scripts). Each instance is
bound to one database session:

    async with get_session() as session:
        service = get_entity_merge_service(session)
        clusters = await service.detect_duplicates(folder_id=3)
        merged = await service.merge(target_id=clusters[0].member_ids[0],
                                     source_ids=clusters[0].member_ids[1:])

Duplicate scans are O(n^2) in the folder's entity count, run synchronously
and cannot be cancelled mid-scan; wrap them in a timeout if needed.
"""

from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.errors import NotFoundError
from models.schemas import (
    CompatibilityReport,
    DuplicateCluster,
    EntitySnapshot,
    MergeCandidate,
    MergeOptions,
    MergePreview,
)
from services.clusterer import DuplicateClusterer
from services.compatibility import CompatibilityAnalyzer
from services.entity_store import EntityStore
from services.merge_coordinator import MergeTransactionCoordinator
from services.similarity import confidence, entity_match_score
from utils.logging import get_logger

logger = get_logger(__name__)


class EntityMergeService:
    """Duplicate detection, compatibility analysis and merging for one session."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.coordinator = MergeTransactionCoordinator(store, self.settings)
        self.analyzer = CompatibilityAnalyzer(store)

    async def analyze(self, source_id: int, target_id: int) -> CompatibilityReport:
        return await self.analyzer.analyze(source_id, target_id)

    async def merge(
        self,
        target_id: int,
        source_ids: Sequence[int],
        options: Optional[MergeOptions | Mapping[str, Any]] = None,
    ) -> EntitySnapshot:
        return await self.coordinator.merge(target_id, source_ids, options)

    async def preview_merge(
        self,
        target_id: int,
        source_ids: Sequence[int],
        options: Optional[MergeOptions | Mapping[str, Any]] = None,
    ) -> MergePreview:
        return await self.coordinator.preview(target_id, source_ids, options)

    async def detect_duplicates(
        self, folder_id: int, min_score: Optional[int] = None
    ) -> list[DuplicateCluster]:
        """Ranked duplicate clusters among a folder's entities.

        Args:
            folder_id: Folder to scan
            min_score: Raw match score needed to join a cluster
                (default: settings.duplicate_min_score)
        """
        min_score = self.settings.duplicate_min_score if min_score is None else min_score

        async with self.store.transaction():
            entities = await self.store.list_entities(folder_id)

        clusters = DuplicateClusterer(min_score).cluster(entities)
        logger.info(
            f"Found {len(clusters)} duplicate clusters in folder {folder_id}",
            extra={
                "folder_id": folder_id,
                "entity_count": len(entities),
                "min_score": min_score,
            },
        )
        return clusters

    async def find_merge_candidates(
        self,
        entity_id: int,
        min_similarity: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[MergeCandidate]:
        """Other entities of the same folder ranked by merge confidence.

        Args:
            entity_id: Entity looking for a merge partner
            min_similarity: Minimum confidence in [0, 1]
                (default: settings.candidate_min_similarity)
            limit: Maximum candidates returned (default: settings.candidate_limit)
        """
        if min_similarity is None:
            min_similarity = self.settings.candidate_min_similarity
        if limit is None:
            limit = self.settings.candidate_limit

        async with self.store.transaction():
            entity = await self.store.get_entity(entity_id)
            if entity is None:
                raise NotFoundError(
                    f"Entity {entity_id} not found", details={"entity_id": entity_id}
                )
            neighbours = await self.store.list_entities(entity.folder_id)

        candidates = []
        for other in neighbours:
            if other.id == entity.id:
                continue
            score = confidence(entity, other)
            if score < min_similarity:
                continue
            candidates.append(
                MergeCandidate(
                    entity=other,
                    confidence=score,
                    raw_score=entity_match_score(entity, other),
                )
            )

        candidates.sort(key=lambda c: (c.confidence, c.raw_score), reverse=True)
        return candidates[:limit]


def get_entity_merge_service(
    session: AsyncSession, settings: Optional[Settings] = None
) -> EntityMergeService:
    """Create an EntityMergeService bound to the given session."""
    return EntityMergeService(EntityStore(session), settings=settings)
