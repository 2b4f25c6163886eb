"""Application configuration for the CaseGraph merge engine."""

import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Merge engine settings loaded from the environment or a .env file."""

    # Database - any SQLAlchemy async URL
    database_url: str = "sqlite+aiosqlite:///./casegraph.db"

    @field_validator("database_url", mode="after")
    @classmethod
    def ensure_async_driver(cls, v: str) -> str:
        """Convert sync driver URLs to their async counterparts."""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        if v.startswith("sqlite://"):
            return v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_recycle: int = 3600  # seconds

    # Logging
    log_level: str = "INFO"
    log_json: bool | None = None  # None = auto-detect from DEBUG

    # Duplicate detection
    duplicate_min_score: int = 60  # raw match score, 60 = phone match alone
    candidate_min_similarity: float = 0.5  # confidence in [0, 1]
    candidate_limit: int = 10

    # Merge defaults (overridable per call through MergeOptions)
    merge_default_strategy: str = "deep_merge"
    merge_enforce_type_compatibility: bool = True
    merge_strict_sources: bool = False  # False = skip missing sources
    merge_records_enabled: bool = True

    # App
    debug: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def __repr__(self) -> str:
        safe_fields = {
            "database_url": self._mask_url(self.database_url),
            "log_level": self.log_level,
            "duplicate_min_score": self.duplicate_min_score,
            "candidate_min_similarity": self.candidate_min_similarity,
            "merge_default_strategy": self.merge_default_strategy,
            "merge_strict_sources": self.merge_strict_sources,
            "debug": self.debug,
        }
        fields_str = ", ".join(f"{k}={v!r}" for k, v in safe_fields.items())
        return f"Settings({fields_str})"

    @staticmethod
    def _mask_url(url: str) -> str:
        """Mask password in database URLs."""
        if not url:
            return url
        return re.sub(r":([^:@/]+)@", ":***@", url)


@lru_cache
def get_settings() -> Settings:
    return Settings()
