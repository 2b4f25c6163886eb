# Models
from models.errors import (
    IncompatibilityError,
    MergeError,
    NotFoundError,
    Result,
    StorageError,
    ValidationError,
)
from models.schemas import (
    CompatibilityReport,
    DuplicateCluster,
    EntitySnapshot,
    MergeOptions,
    MergeStrategy,
)

__all__ = [
    "CompatibilityReport",
    "DuplicateCluster",
    "EntitySnapshot",
    "IncompatibilityError",
    "MergeError",
    "MergeOptions",
    "MergeStrategy",
    "NotFoundError",
    "Result",
    "StorageError",
    "ValidationError",
]
