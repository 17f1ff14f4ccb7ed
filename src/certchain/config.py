"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at construction

Settings are built by the caller (or the composition root) and passed into
the engine; no module reads configuration on its own.

Architecture: Only EngineSettings is a BaseSettings instance. CrlCacheSettings
is a plain BaseModel populated via env_nested_delimiter="__", so the env var
CERTCHAIN_CRL_CACHE__MAX_ENTRIES maps to crl_cache.max_entries.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from certchain import __version__

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class CrlCacheSettings(BaseModel):
    """
    CRL cache limits.

    max_bytes=None bounds the cache by entry count only. stale_grace_seconds
    lets a CRL be served for that long past its nextUpdate before refetching.
    """

    max_entries: int = Field(default=100, ge=1, description="Maximum number of cached CRLs")
    max_bytes: int | None = Field(default=None, ge=1, description="Approximate byte budget for cached CRLs")
    stale_grace_seconds: int = Field(default=0, ge=0, description="Grace period past nextUpdate")

    @property
    def stale_grace(self) -> timedelta:
        return timedelta(seconds=self.stale_grace_seconds)


class EngineSettings(BaseSettings):
    """
    Engine settings — warn window, per-call timeout, batch concurrency and friends.

    Load order (highest priority first):
      1. Constructor arguments
      2. Environment variables (CERTCHAIN_ prefix)
      3. .env file
      4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CERTCHAIN_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    warn_days: int = Field(default=30, ge=0, description="Expiry warning window in days")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per network call timeout")
    batch_concurrency: int = Field(default=8, ge=1, description="Maximum concurrent batch items")
    max_depth: int = Field(default=10, ge=1, description="Maximum AIA hops when resolving")
    include_root: bool = Field(default=True)
    prefer_ocsp: bool = Field(default=True)
    user_agent: str = Field(default=f"certchain/{__version__}")
    log_level: str = Field(default="INFO")
    crl_cache: CrlCacheSettings = Field(default_factory=CrlCacheSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Accept standard logging level names, case-insensitively."""
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level
