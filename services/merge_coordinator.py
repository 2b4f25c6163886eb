"""Atomic entity merge coordinator.

Consolidates one or more source entities into a target inside a single
database transaction:

1. Load the target (NotFoundError if missing)
2. For each source, in request order:
   a. Load it; a missing source is skipped (or fails under strict policy)
   b. Abort on type mismatch when type compatibility is enforced
   c. Merge name and attributes, extend the ``merged_from`` trail
   d. Repoint relationships and files onto the target, collapse collisions
   e. Snapshot the source (best-effort) and delete it
3. Write the target's name, attributes and updated_at once
4. Commit; on any exception roll everything back and re-raise it unchanged

There is no application-level locking and no retry. The storage engine's
transaction isolation is the only guard against concurrent merges, so
callers must serialize merges touching overlapping entity ids.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from config import Settings, get_settings
from models.errors import (
    IncompatibilityError,
    NotFoundError,
    Result,
    ValidationError,
)
from models.schemas import (
    MERGED_FROM_KEY,
    EntitySnapshot,
    MergeOptions,
    MergePreview,
    MergeStrategy,
)
from services.attribute_merger import (
    build_merged_name,
    merge_attributes,
    merge_audit_trail,
    strip_audit_trail,
)
from services.entity_store import EntityStore
from utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class MergeStatus(Enum):
    """Status of a merge execution."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class MergeContext:
    """Bookkeeping for one merge execution.

    Attributes:
        merge_id: Unique identifier for this merge (also bound to log records)
        target_id: Surviving entity
        source_ids: Requested sources, in processing order
        absorbed: Sources actually merged
        skipped: Sources that did not exist (lenient policy only)
        relationships_repointed: Edge endpoints rewritten across all sources
        files_repointed: Attachments moved across all sources
    """

    target_id: int
    source_ids: list[int]
    merge_id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: MergeStatus = MergeStatus.PENDING
    absorbed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    relationships_repointed: int = 0
    files_repointed: int = 0
    error: Exception | None = None

    @property
    def duration_ms(self) -> float:
        return (datetime.now(UTC) - self.started_at).total_seconds() * 1000


@dataclass(frozen=True)
class _ResolvedOptions:
    prefer: str
    strategy: MergeStrategy
    enforce_types: bool
    strict_sources: bool
    transfer_relationships: bool
    delete_source: bool


class MergeTransactionCoordinator:
    """Runs merges end-to-end against an ``EntityStore``."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.last_context: Optional[MergeContext] = None

    # ------------------------------------------------------------------
    # Validation helpers (explicit results, unwrapped at the boundary)
    # ------------------------------------------------------------------

    @staticmethod
    def validate_request(target_id: Optional[int], source_ids: Sequence[int]) -> Result[None]:
        if target_id is None:
            return Result.fail(ValidationError("target_id is required"))
        if isinstance(source_ids, (str, bytes)) or not isinstance(source_ids, Sequence):
            return Result.fail(ValidationError("source_ids must be a list of entity ids"))
        if not source_ids:
            return Result.fail(ValidationError("source_ids must not be empty"))
        if target_id in source_ids:
            return Result.fail(
                ValidationError(
                    "source_ids must not contain the target",
                    details={"target_id": target_id},
                )
            )
        if len(set(source_ids)) != len(source_ids):
            return Result.fail(
                ValidationError(
                    "source_ids contains duplicates",
                    details={"source_ids": list(source_ids)},
                )
            )
        return Result.ok()

    @staticmethod
    def check_type_compatibility(
        source: EntitySnapshot, target: EntitySnapshot
    ) -> Result[None]:
        if source.type != target.type:
            return Result.fail(
                IncompatibilityError(
                    f"Cannot merge a '{source.type}' into a '{target.type}'",
                    details={
                        "source_id": source.id,
                        "target_id": target.id,
                        "source_type": source.type,
                        "target_type": target.type,
                    },
                )
            )
        return Result.ok()

    async def _load_source(
        self, source_id: int, strict: bool
    ) -> Result[Optional[EntitySnapshot]]:
        source = await self.store.get_entity(source_id)
        if source is None and strict:
            return Result.fail(
                NotFoundError(
                    f"Source entity {source_id} not found",
                    details={"source_id": source_id},
                )
            )
        return Result.ok(source)

    def _resolve_options(
        self, options: Optional[MergeOptions | Mapping[str, Any]]
    ) -> _ResolvedOptions:
        try:
            options = MergeOptions.model_validate(options or {})
        except PydanticValidationError as e:
            raise ValidationError(
                "Malformed merge options",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        try:
            strategy = MergeStrategy(
                options.merge_attributes or self.settings.merge_default_strategy
            )
        except ValueError as e:
            raise ValidationError(
                f"Unknown merge strategy: {self.settings.merge_default_strategy!r}"
            ) from e
        return _ResolvedOptions(
            prefer=options.prefer,
            strategy=strategy,
            enforce_types=(
                options.enforce_type_compatibility
                if options.enforce_type_compatibility is not None
                else self.settings.merge_enforce_type_compatibility
            ),
            strict_sources=(
                options.strict_sources
                if options.strict_sources is not None
                else self.settings.merge_strict_sources
            ),
            transfer_relationships=options.transfer_relationships,
            delete_source=options.delete_source,
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge(
        self,
        target_id: int,
        source_ids: Sequence[int],
        options: Optional[MergeOptions | Mapping[str, Any]] = None,
    ) -> EntitySnapshot:
        """Merge ``source_ids`` into ``target_id`` atomically.

        Args:
            target_id: Entity that survives the merge
            source_ids: Entities absorbed, processed in order
            options: Strategy and policy overrides

        Returns:
            The target entity as committed

        Raises:
            ValidationError: Malformed request or options (raised before any I/O)
            NotFoundError: Missing target, or missing source under strict policy
            IncompatibilityError: Source/target type mismatch
            StorageError: Query or transaction failure
        """
        self.validate_request(target_id, source_ids).unwrap()
        resolved = self._resolve_options(options)
        context = MergeContext(target_id=target_id, source_ids=list(source_ids))
        self.last_context = context

        with LogContext(merge_id=context.merge_id):
            logger.info(
                f"Starting merge of {len(source_ids)} entities into {target_id}",
                extra={
                    "target_id": target_id,
                    "source_ids": list(source_ids),
                    "strategy": resolved.strategy.value,
                },
            )

            tx = self.store.transaction()
            await tx.begin()
            context.status = MergeStatus.IN_PROGRESS
            try:
                merged = await self._merge_body(context, resolved)
                await tx.commit()
            except Exception as e:
                context.error = e
                try:
                    await tx.rollback()
                except Exception as rollback_error:
                    logger.error(
                        f"Rollback failed after merge error: {rollback_error}",
                        extra={"error_type": type(rollback_error).__name__},
                    )
                context.status = MergeStatus.ROLLED_BACK
                logger.error(
                    f"Merge into {target_id} rolled back: {e}",
                    extra={
                        "target_id": target_id,
                        "absorbed_before_failure": context.absorbed,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise

            context.status = MergeStatus.COMMITTED
            logger.info(
                f"Merge into {target_id} committed",
                extra={
                    "target_id": target_id,
                    "absorbed": context.absorbed,
                    "skipped": context.skipped,
                    "relationships_repointed": context.relationships_repointed,
                    "files_repointed": context.files_repointed,
                    "duration_ms": context.duration_ms,
                },
            )
            return merged

    async def _merge_body(
        self, context: MergeContext, opts: _ResolvedOptions
    ) -> EntitySnapshot:
        target = await self.store.get_entity(context.target_id)
        if target is None:
            raise NotFoundError(
                f"Target entity {context.target_id} not found",
                details={"target_id": context.target_id},
            )

        name = target.name
        attributes = strip_audit_trail(target.attributes)
        trail = target.merged_from

        for source_id in context.source_ids:
            source = (await self._load_source(source_id, opts.strict_sources)).unwrap()
            if source is None:
                logger.warning(
                    f"Source entity {source_id} not found, skipping",
                    extra={"source_id": source_id},
                )
                context.skipped.append(source_id)
                continue

            if opts.enforce_types:
                self.check_type_compatibility(source, target).unwrap()

            name = build_merged_name(name, source.name)
            attributes = merge_attributes(
                attributes,
                strip_audit_trail(source.attributes),
                strategy=opts.strategy,
                prefer=opts.prefer,
            )
            trail = merge_audit_trail({MERGED_FROM_KEY: trail}, source.attributes, source_id)

            if opts.transfer_relationships:
                moved = await self.store.transfer_links(source_id, context.target_id)
                context.relationships_repointed += moved.relationships_repointed
                context.files_repointed += moved.files_repointed
            elif opts.delete_source:
                await self.store.drop_links(source_id)

            if opts.delete_source:
                if self.settings.merge_records_enabled:
                    await self.store.record_merge(
                        context.merge_id,
                        source,
                        context.target_id,
                        options={
                            "prefer": opts.prefer,
                            "merge_attributes": opts.strategy.value,
                            "transfer_relationships": opts.transfer_relationships,
                        },
                    )
                await self.store.delete_entity(source_id)

            context.absorbed.append(source_id)

        return await self.store.update_entity(
            context.target_id,
            name=name,
            attributes={**attributes, MERGED_FROM_KEY: trail},
        )

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    async def preview(
        self,
        target_id: int,
        source_ids: Sequence[int],
        options: Optional[MergeOptions | Mapping[str, Any]] = None,
    ) -> MergePreview:
        """Compute what ``merge`` would produce without writing anything."""
        self.validate_request(target_id, source_ids).unwrap()
        opts = self._resolve_options(options)

        async with self.store.transaction():
            target = await self.store.get_entity(target_id)
            if target is None:
                raise NotFoundError(
                    f"Target entity {target_id} not found",
                    details={"target_id": target_id},
                )

            name = target.name
            attributes = strip_audit_trail(target.attributes)
            trail = target.merged_from
            preview = MergePreview(target_id=target_id, name=name, attributes={})

            for source_id in source_ids:
                source = (await self._load_source(source_id, opts.strict_sources)).unwrap()
                if source is None:
                    preview.missing_ids.append(source_id)
                    continue
                if opts.enforce_types:
                    self.check_type_compatibility(source, target).unwrap()

                name = build_merged_name(name, source.name)
                attributes = merge_attributes(
                    attributes,
                    strip_audit_trail(source.attributes),
                    strategy=opts.strategy,
                    prefer=opts.prefer,
                )
                trail = merge_audit_trail({MERGED_FROM_KEY: trail}, source.attributes, source_id)
                preview.absorbed_ids.append(source_id)

                if opts.transfer_relationships:
                    edges = await self.store.list_relationships(source_id)
                    preview.relationships_to_repoint += len(edges)
                    preview.files_to_repoint += await self.store.count_files(source_id)

            preview.name = name
            preview.attributes = {**attributes, MERGED_FROM_KEY: trail}
            return preview
