"""Advisory pre-merge compatibility analysis.

Reports attribute conflicts, warnings and a confidence score for a
source/target pair. Read-only: it never mutates state and never raises for
conflicts. Only a type mismatch is enforced later, by the merge coordinator.

Confidence starts at 1.0 and is:
- forced to 0 when the pair is incompatible (type mismatch or a conflict on
  a critical attribute),
- otherwise reduced by 0.1 per warning, 0.15 per attribute conflict and
  0.05 per overlapping relationship, then clamped to [0, 1].
"""

from typing import Any, Sequence

from models.errors import NotFoundError, ValidationError
from models.schemas import (
    MERGED_FROM_KEY,
    AttributeConflict,
    CompatibilityReport,
    ConflictSeverity,
    EntitySnapshot,
    RelationshipSnapshot,
)
from services.entity_store import EntityStore
from services.normalizer import (
    EMAIL_KEYS,
    PHONE_KEYS,
    URL_KEYS,
    normalize_email,
    normalize_phone,
    normalize_url,
)
from services.similarity import confidence as similarity_confidence
from utils.logging import get_logger

logger = get_logger(__name__)

# Attributes whose disagreement means two records are not the same subject
CRITICAL_ATTRIBUTES: dict[str, frozenset[str]] = {
    "person": frozenset({"email", "phone"}),
    "organization": frozenset({"siret", "registration_number"}),
}
MEDIUM_ATTRIBUTES = frozenset({"address", "website", "description"})

WARNING_PENALTY = 0.1
CONFLICT_PENALTY = 0.15
OVERLAP_PENALTY = 0.05


def _comparable(key: str, value: Any) -> Any:
    if key in EMAIL_KEYS:
        return normalize_email(value)
    if key in PHONE_KEYS:
        return normalize_phone(value)
    if key in URL_KEYS:
        return normalize_url(value)
    if isinstance(value, str):
        return value.strip()
    return value


def conflict_severity(entity_type: str, key: str) -> ConflictSeverity:
    if key in CRITICAL_ATTRIBUTES.get(entity_type, frozenset()):
        return ConflictSeverity.HIGH
    if key in MEDIUM_ATTRIBUTES:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def find_attribute_conflicts(
    source: EntitySnapshot, target: EntitySnapshot
) -> list[AttributeConflict]:
    """Keys present on both sides whose (normalized) values disagree."""
    shared = (set(source.attributes) & set(target.attributes)) - {MERGED_FROM_KEY}
    conflicts = []
    for key in sorted(shared):
        source_value = source.attributes[key]
        target_value = target.attributes[key]
        if source_value is None or target_value is None:
            continue
        if _comparable(key, source_value) == _comparable(key, target_value):
            continue
        conflicts.append(
            AttributeConflict(
                key=key,
                source_value=source_value,
                target_value=target_value,
                severity=conflict_severity(target.type, key),
            )
        )
    return conflicts


def count_relationship_overlaps(
    source_id: int,
    target_id: int,
    source_edges: Sequence[RelationshipSnapshot],
    target_edges: Sequence[RelationshipSnapshot],
) -> int:
    """Edges that would collapse or self-loop if the pair were merged.

    Counts direct edges between the two entities, plus edges each has to the
    same third entity with the same type and direction.
    """
    pair = {source_id, target_id}
    direct = {e.id for e in [*source_edges, *target_edges] if {e.from_entity, e.to_entity} == pair}

    def signatures(entity_id: int, edges: Sequence[RelationshipSnapshot]) -> set[tuple]:
        out = set()
        for edge in edges:
            if edge.from_entity == entity_id and edge.to_entity not in pair:
                out.add(("out", edge.to_entity, edge.type))
            elif edge.to_entity == entity_id and edge.from_entity not in pair:
                out.add(("in", edge.from_entity, edge.type))
        return out

    shared = signatures(source_id, source_edges) & signatures(target_id, target_edges)
    return len(direct) + len(shared)


def analyze_compatibility(
    source: EntitySnapshot,
    target: EntitySnapshot,
    source_edges: Sequence[RelationshipSnapshot] = (),
    target_edges: Sequence[RelationshipSnapshot] = (),
) -> CompatibilityReport:
    """Build the advisory report for merging ``source`` into ``target``."""
    blockers: list[str] = []
    warnings: list[str] = []

    if source.type != target.type:
        blockers.append(f"Type mismatch: '{source.type}' vs '{target.type}'")

    conflicts = find_attribute_conflicts(source, target)
    for conflict in conflicts:
        if conflict.severity is ConflictSeverity.HIGH:
            blockers.append(f"Critical attribute '{conflict.key}' differs")

    if source.folder_id != target.folder_id:
        warnings.append("Entities belong to different folders")

    overlaps = count_relationship_overlaps(source.id, target.id, source_edges, target_edges)
    compatible = not blockers

    if compatible:
        score = (
            1.0
            - WARNING_PENALTY * len(warnings)
            - CONFLICT_PENALTY * len(conflicts)
            - OVERLAP_PENALTY * overlaps
        )
        score = round(min(1.0, max(0.0, score)), 4)
    else:
        score = 0.0

    return CompatibilityReport(
        source_id=source.id,
        target_id=target.id,
        compatible=compatible,
        conflicts=conflicts,
        blockers=blockers,
        warnings=warnings,
        relationship_overlaps=overlaps,
        confidence=score,
        similarity=similarity_confidence(source, target),
    )


class CompatibilityAnalyzer:
    """Loads a pair from storage and analyzes it."""

    def __init__(self, store: EntityStore):
        self.store = store

    async def analyze(self, source_id: int, target_id: int) -> CompatibilityReport:
        if source_id is None or target_id is None:
            raise ValidationError("source_id and target_id are required")
        if source_id == target_id:
            raise ValidationError(
                "source and target must be different entities",
                details={"entity_id": source_id},
            )

        async with self.store.transaction():
            source = await self.store.get_entity(source_id)
            target = await self.store.get_entity(target_id)
            missing = [i for i, e in ((source_id, source), (target_id, target)) if e is None]
            if missing:
                raise NotFoundError(
                    f"Entities not found: {missing}", details={"missing_ids": missing}
                )

            source_edges = await self.store.list_relationships(source_id)
            target_edges = await self.store.list_relationships(target_id)

        report = analyze_compatibility(source, target, source_edges, target_edges)
        logger.debug(
            f"Compatibility {source_id} -> {target_id}: "
            f"compatible={report.compatible}, confidence={report.confidence}",
            extra={
                "source_id": source_id,
                "target_id": target_id,
                "conflicts": len(report.conflicts),
                "relationship_overlaps": report.relationship_overlaps,
            },
        )
        return report
