"""Pydantic value objects exchanged by the merge engine."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
)

# Attribute bags are open maps of JSON values:
# String | Number | Bool | Array<Value> | Map<string, Value> | Null
Attributes = dict[str, JsonValue]

_ATTRIBUTES_ADAPTER: TypeAdapter[Attributes] = TypeAdapter(Attributes)

# Audit trail key stored inside the surviving entity's attributes
MERGED_FROM_KEY = "merged_from"


def parse_attributes(raw: Any) -> Attributes:
    """Deserialize an attribute bag from a JSON string or mapping.

    Anything that is not a JSON object (or cannot be parsed) yields ``{}``.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    if not isinstance(raw, dict):
        return {}
    try:
        return _ATTRIBUTES_ADAPTER.validate_python(raw)
    except PydanticValidationError:
        return {}


def serialize_attributes(attributes: Optional[Attributes]) -> str:
    """Serialize an attribute bag to its canonical JSON text."""
    return _ATTRIBUTES_ADAPTER.dump_json(attributes or {}).decode()


class MergeStrategy(str, Enum):
    """How conflicting attribute values are reconciled during a merge."""

    TARGET_PRIORITY = "target_priority"  # shallow, target overwrites
    SOURCE_PRIORITY = "source_priority"  # shallow, source overwrites
    MERGE_ALL = "merge_all"  # per-key reconciliation
    DEEP_MERGE = "deep_merge"  # recursive structural merge honoring `prefer`


class ConflictSeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Snapshots of persisted rows
# ---------------------------------------------------------------------------


class EntitySnapshot(BaseModel):
    """Detached, immutable view of an entity row."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    folder_id: int
    type: str
    name: str
    x: float = 0.0
    y: float = 0.0
    attributes: Attributes = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("attributes", mode="before")
    @classmethod
    def coerce_attributes(cls, v: Any) -> Attributes:
        return parse_attributes(v)

    @property
    def merged_from(self) -> list[str]:
        trail = self.attributes.get(MERGED_FROM_KEY)
        return [str(i) for i in trail] if isinstance(trail, list) else []


class RelationshipSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    from_entity: int
    to_entity: int
    type: str
    strength: Literal["weak", "medium", "strong"] = "medium"
    description: Optional[str] = None
    attributes: Attributes = Field(default_factory=dict)

    @field_validator("attributes", mode="before")
    @classmethod
    def coerce_attributes(cls, v: Any) -> Attributes:
        return parse_attributes(v)


class FileSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    entity_id: int
    filename: str
    path: str
    size: Optional[int] = None
    hash: Optional[str] = None


# ---------------------------------------------------------------------------
# Merge request / results
# ---------------------------------------------------------------------------


class MergeOptions(BaseModel):
    """Per-call merge options.

    Fields left as None fall back to the configured defaults.
    """

    model_config = ConfigDict(extra="forbid")

    prefer: Literal["target", "source"] = "target"
    merge_attributes: Optional[MergeStrategy] = None
    transfer_relationships: bool = True
    delete_source: bool = True
    enforce_type_compatibility: Optional[bool] = None
    strict_sources: Optional[bool] = None


class ClusterMember(BaseModel):
    id: int
    name: str
    type: str


class DuplicateCluster(BaseModel):
    """Ephemeral group of likely duplicates; never persisted."""

    members: list[ClusterMember]
    score: int = Field(..., description="Average pairwise raw match score")

    @property
    def member_ids(self) -> list[int]:
        return [m.id for m in self.members]


class AttributeConflict(BaseModel):
    key: str
    source_value: JsonValue = None
    target_value: JsonValue = None
    severity: ConflictSeverity


class CompatibilityReport(BaseModel):
    """Advisory pre-merge report; never blocks a merge on its own."""

    source_id: int
    target_id: int
    compatible: bool
    conflicts: list[AttributeConflict] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    relationship_overlaps: int = 0
    confidence: float = Field(..., ge=0.0, le=1.0)
    similarity: float = Field(0.0, ge=0.0, le=1.0)


class MergeCandidate(BaseModel):
    entity: EntitySnapshot
    confidence: float = Field(..., ge=0.0, le=1.0)
    raw_score: int = 0


class MergePreview(BaseModel):
    target_id: int
    name: str
    attributes: Attributes
    absorbed_ids: list[int] = Field(default_factory=list)
    missing_ids: list[int] = Field(default_factory=list)
    relationships_to_repoint: int = 0
    files_to_repoint: int = 0
