"""Rewrites graph edges and file attachments from an absorbed entity onto the survivor.

Must run inside the caller's transaction; nothing here commits.

Collapsing duplicates is lossy: when repointing makes several
edges share (from_entity, to_entity, type), the lowest id is kept and the
others are deleted together with their description, strength and attributes.
No content from the dropped rows is merged into the kept one.
"""

from dataclasses import dataclass

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.tables import EntityFile, Relationship
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RepointResult:
    """Row counts touched while moving one source onto the target."""

    from_repointed: int = 0
    to_repointed: int = 0
    self_loops_removed: int = 0
    duplicates_removed: int = 0
    files_repointed: int = 0

    @property
    def relationships_repointed(self) -> int:
        return self.from_repointed + self.to_repointed


class RelationshipRepointer:
    """Moves relationships and files between entities within one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def repoint_relationships(
        self, source_id: int, target_id: int
    ) -> tuple[int, int]:
        """Point every edge touching ``source_id`` at ``target_id`` instead.

        Returns:
            Tuple of (edges whose from_entity changed, edges whose to_entity changed)
        """
        from_result = await self.session.execute(
            update(Relationship)
            .where(Relationship.from_entity == source_id)
            .values(from_entity=target_id)
            .execution_options(synchronize_session=False)
        )
        to_result = await self.session.execute(
            update(Relationship)
            .where(Relationship.to_entity == source_id)
            .values(to_entity=target_id)
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            f"Repointed relationships {source_id} -> {target_id}",
            extra={
                "source_id": source_id,
                "target_id": target_id,
                "from_repointed": from_result.rowcount,
                "to_repointed": to_result.rowcount,
            },
        )
        return from_result.rowcount, to_result.rowcount

    async def remove_self_loops(self, entity_id: int) -> int:
        """Delete edges from ``entity_id`` to itself.

        These appear when an absorbed entity was linked to the target.
        """
        result = await self.session.execute(
            delete(Relationship)
            .where(
                Relationship.from_entity == entity_id,
                Relationship.to_entity == entity_id,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def dedupe_relationships(self, entity_id: int | None = None) -> int:
        """Keep the lowest-id edge of each (from_entity, to_entity, type) group.

        Args:
            entity_id: When given, only groups touching this entity are
                examined. Repointing only creates duplicates around the
                target, so the scoped form gives the same result cheaper.

        Returns:
            Number of edges deleted
        """
        keepers = select(func.min(Relationship.id)).group_by(
            Relationship.from_entity, Relationship.to_entity, Relationship.type
        )
        conditions = [Relationship.id.not_in(keepers)]
        if entity_id is not None:
            conditions.append(
                or_(
                    Relationship.from_entity == entity_id,
                    Relationship.to_entity == entity_id,
                )
            )

        result = await self.session.execute(
            delete(Relationship)
            .where(and_(*conditions))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                f"Collapsed {result.rowcount} duplicate relationships",
                extra={"entity_id": entity_id, "removed": result.rowcount},
            )
        return result.rowcount

    async def repoint_files(self, source_id: int, target_id: int) -> int:
        """Move every attachment of ``source_id`` to ``target_id``."""
        result = await self.session.execute(
            update(EntityFile)
            .where(EntityFile.entity_id == source_id)
            .values(entity_id=target_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_relationships_of(self, entity_id: int) -> int:
        result = await self.session.execute(
            delete(Relationship)
            .where(
                or_(
                    Relationship.from_entity == entity_id,
                    Relationship.to_entity == entity_id,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_files_of(self, entity_id: int) -> int:
        result = await self.session.execute(
            delete(EntityFile)
            .where(EntityFile.entity_id == entity_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def transfer(self, source_id: int, target_id: int) -> RepointResult:
        """Repoint edges and files of one source, then collapse what collided."""
        from_count, to_count = await self.repoint_relationships(source_id, target_id)
        self_loops = await self.remove_self_loops(target_id)
        duplicates = await self.dedupe_relationships(target_id)
        files = await self.repoint_files(source_id, target_id)
        return RepointResult(
            from_repointed=from_count,
            to_repointed=to_count,
            self_loops_removed=self_loops,
            duplicates_removed=duplicates,
            files_repointed=files,
        )
