"""SQLAlchemy-backed storage collaborator for the merge engine.

The store wraps one ``AsyncSession``. All reads return detached pydantic
snapshots, and all writes go through SQL statements rather than mutating
ORM instances, so a rollback leaves nothing stale behind in Python objects.

Every SQLAlchemy failure surfaces as ``StorageError`` (original chained).
Merge records are the one exception: they are best-effort and a failure to
write one is logged and swallowed inside its own SAVEPOINT.
"""

import functools
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional, ParamSpec, TypeVar

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from models.errors import NotFoundError, StorageError
from models.schemas import (
    Attributes,
    EntitySnapshot,
    FileSnapshot,
    RelationshipSnapshot,
)
from models.tables import Entity, EntityFile, MergeRecord, Relationship
from services.relationship_repointer import RelationshipRepointer, RepointResult
from utils.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def storage_operation(func_: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Translate SQLAlchemy failures into ``StorageError``."""

    @functools.wraps(func_)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func_(*args, **kwargs)
        except SQLAlchemyError as e:
            raise StorageError(
                f"{func_.__name__} failed: {type(e).__name__}: {e}",
                details={"operation": func_.__name__},
            ) from e

    return wrapper


class TransactionScope:
    """Explicit transaction boundary around a session.

    ``commit()`` and ``rollback()`` are the only ways a scope ends. Used as an
    async context manager it begins on entry and rolls back on exit if the
    body did not commit (including when it raised).

    If the session already has a transaction open, the scope runs in a
    SAVEPOINT instead and only ever ends that; the caller's outer transaction
    and any work pending in it are left for the caller to commit.
    """

    PENDING = "pending"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"

    def __init__(self, session: AsyncSession):
        self.session = session
        self.state = self.PENDING
        self._savepoint: Optional[AsyncSessionTransaction] = None

    @property
    def is_active(self) -> bool:
        return self.state == self.ACTIVE

    @property
    def is_nested(self) -> bool:
        return self._savepoint is not None

    async def begin(self) -> "TransactionScope":
        if self.state != self.PENDING:
            raise StorageError(f"Cannot begin a transaction in state {self.state!r}")
        try:
            if self.session.in_transaction():
                self._savepoint = await self.session.begin_nested()
            else:
                await self.session.begin()
        except SQLAlchemyError as e:
            raise StorageError(f"BEGIN failed: {e}") from e
        self.state = self.ACTIVE
        return self

    async def commit(self) -> None:
        if not self.is_active:
            raise StorageError(f"Cannot commit a transaction in state {self.state!r}")
        try:
            if self._savepoint is not None:
                await self._savepoint.commit()
            else:
                await self.session.commit()
        except SQLAlchemyError as e:
            # Still active: the caller's rollback path cleans up
            raise StorageError(f"COMMIT failed: {e}") from e
        self.state = self.COMMITTED

    async def rollback(self) -> None:
        if not self.is_active:
            return
        try:
            if self._savepoint is not None:
                await self._savepoint.rollback()
            else:
                await self.session.rollback()
        except SQLAlchemyError as e:
            raise StorageError(f"ROLLBACK failed: {e}") from e
        finally:
            self.state = self.ROLLED_BACK

    async def __aenter__(self) -> "TransactionScope":
        return await self.begin()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.is_active:
            await self.rollback()
        return False


class EntityStore:
    """Entity, relationship and file access for one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repointer = RelationshipRepointer(session)

    def transaction(self) -> TransactionScope:
        return TransactionScope(self.session)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    @storage_operation
    async def get_entity(self, entity_id: int) -> Optional[EntitySnapshot]:
        result = await self.session.execute(
            select(Entity)
            .where(Entity.id == entity_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return EntitySnapshot.model_validate(row) if row is not None else None

    @storage_operation
    async def update_entity(
        self,
        entity_id: int,
        name: Optional[str] = None,
        attributes: Optional[Attributes] = None,
    ) -> EntitySnapshot:
        """Update name and/or attributes, bumping updated_at."""
        values: dict[str, Any] = {"updated_at": datetime.now(UTC)}
        if name is not None:
            values["name"] = name
        if attributes is not None:
            values["attributes"] = attributes

        result = await self.session.execute(
            update(Entity)
            .where(Entity.id == entity_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(
                f"Entity {entity_id} not found", details={"entity_id": entity_id}
            )
        return await self.get_entity(entity_id)

    @storage_operation
    async def delete_entity(self, entity_id: int) -> bool:
        result = await self.session.execute(
            delete(Entity)
            .where(Entity.id == entity_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    @storage_operation
    async def list_entities(
        self, folder_id: int, entity_type: Optional[str] = None
    ) -> list[EntitySnapshot]:
        """All entities of a folder in id order, optionally filtered by type."""
        stmt = select(Entity).where(Entity.folder_id == folder_id)
        if entity_type is not None:
            stmt = stmt.where(Entity.type == entity_type)
        result = await self.session.execute(
            stmt.order_by(Entity.id).execution_options(populate_existing=True)
        )
        return [EntitySnapshot.model_validate(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # Relationships and files
    # ------------------------------------------------------------------

    @storage_operation
    async def list_relationships(self, entity_id: int) -> list[RelationshipSnapshot]:
        """Edges in either direction touching ``entity_id``."""
        result = await self.session.execute(
            select(Relationship)
            .where(
                or_(
                    Relationship.from_entity == entity_id,
                    Relationship.to_entity == entity_id,
                )
            )
            .order_by(Relationship.id)
            .execution_options(populate_existing=True)
        )
        return [RelationshipSnapshot.model_validate(r) for r in result.scalars().all()]

    @storage_operation
    async def list_files(self, entity_id: int) -> list[FileSnapshot]:
        result = await self.session.execute(
            select(EntityFile)
            .where(EntityFile.entity_id == entity_id)
            .order_by(EntityFile.id)
            .execution_options(populate_existing=True)
        )
        return [FileSnapshot.model_validate(f) for f in result.scalars().all()]

    @storage_operation
    async def count_files(self, entity_id: int) -> int:
        result = await self.session.execute(
            select(func.count(EntityFile.id)).where(EntityFile.entity_id == entity_id)
        )
        return result.scalar_one()

    @storage_operation
    async def repoint_relationships(self, source_id: int, target_id: int) -> tuple[int, int]:
        return await self.repointer.repoint_relationships(source_id, target_id)

    @storage_operation
    async def dedupe_relationships(self, entity_id: Optional[int] = None) -> int:
        return await self.repointer.dedupe_relationships(entity_id)

    @storage_operation
    async def repoint_files(self, source_id: int, target_id: int) -> int:
        return await self.repointer.repoint_files(source_id, target_id)

    @storage_operation
    async def transfer_links(self, source_id: int, target_id: int) -> RepointResult:
        """Repoint edges and files of ``source_id`` and collapse collisions."""
        return await self.repointer.transfer(source_id, target_id)

    @storage_operation
    async def drop_links(self, entity_id: int) -> tuple[int, int]:
        """Delete edges and files owned by ``entity_id``."""
        edges = await self.repointer.delete_relationships_of(entity_id)
        files = await self.repointer.delete_files_of(entity_id)
        return edges, files

    # ------------------------------------------------------------------
    # Merge audit
    # ------------------------------------------------------------------

    async def record_merge(
        self,
        merge_id: str,
        source: EntitySnapshot,
        target_id: int,
        options: dict[str, Any],
    ) -> Optional[int]:
        """Persist an undo snapshot of ``source``; returns the record id or None."""
        record = MergeRecord(
            merge_id=merge_id,
            target_id=target_id,
            source_id=source.id,
            source_snapshot=source.model_dump(mode="json"),
            options=options,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()
        except SQLAlchemyError as e:
            logger.warning(
                f"Could not record merge of {source.id} into {target_id}: {e}",
                extra={
                    "source_id": source.id,
                    "target_id": target_id,
                    "error_type": type(e).__name__,
                },
            )
            return None
        return record.id

    @storage_operation
    async def list_merge_records(self, target_id: int) -> list[MergeRecord]:
        result = await self.session.execute(
            select(MergeRecord)
            .where(MergeRecord.target_id == target_id)
            .order_by(MergeRecord.id)
        )
        return list(result.scalars().all())
