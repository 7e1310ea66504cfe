"""Core configuration schema for gitshelf using Pydantic.

This module defines the complete configuration structure with:
- Remote store connection (base URL, branch, request timeout)
- Conflict retry policy (bounded attempts, exponential backoff)
- Per-collection sync settings (shard mode, paths, debounce, merge policy)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_BASE_URL = "https://api.github.com"

ShardMode = Literal["per_day", "whole"]
MergePolicy = Literal["union", "last_write_wins"]

# ============================================================================
# Remote Configuration
# ============================================================================


class RemoteConfig(BaseModel):
    """Connection settings for the contents API."""

    base_url: str = Field(DEFAULT_BASE_URL, description="API host")
    branch: str | None = Field(None, description="Branch (ref) to read and commit to; None = default branch")
    timeout: float = Field(15.0, gt=0, description="Per-request timeout in seconds")

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        """Strip trailing slashes so path joins stay predictable."""
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL: {v!r}")
        return v


class RetryConfig(BaseModel):
    """Conflict retry policy for writes."""

    max_retries: int = Field(3, ge=0, description="Retries after the first attempt on conflict")
    backoff_base: float = Field(0.2, ge=0, description="First backoff delay in seconds, doubled per retry")


# ============================================================================
# Collection Configuration
# ============================================================================


class CollectionConfig(BaseModel):
    """Configuration for one synced record collection."""

    mode: ShardMode = Field("whole", description="per_day: one file per date; whole: one fixed file")
    path: str = Field(..., description="Directory (per_day) or file path (whole)")
    prefix: str = Field("", description="Optional path prefix inside the repository")
    debounce_seconds: float = Field(1.0, ge=0, description="Quiet period before an automatic flush")
    auto_save: bool = Field(False, description="Flush automatically after mutations")
    merge_policy: MergePolicy = Field("union", description="How conflicting shard writes are reconciled")
    commit_message: str = Field("sync: update {path}", description="Commit message template ({path}, {timestamp})")
    credential_namespace: str = Field("gitshelf", description="Key prefix for token/repo in the config provider")
    persist_local: bool = Field(False, description="Mirror shards and revisions into the config provider")
    max_parallel_reads: int = Field(8, gt=0, description="Concurrent shard fetches during load")

    @field_validator("path", "prefix")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip().strip("/")

    @model_validator(mode="after")
    def validate_path(self) -> CollectionConfig:
        if not self.path:
            raise ValueError("collection path must not be empty")
        return self

    @property
    def full_path(self) -> str:
        return f"{self.prefix}/{self.path}" if self.prefix else self.path


# ============================================================================
# Main Settings
# ============================================================================


class GitShelfSettings(BaseModel):
    """Main gitshelf configuration.

    Configuration priority (highest to lowest):
    1. CLI overrides
    2. Project config (.gitshelf/config.json|yaml)
    3. User config (~/.gitshelf/config.json|yaml)
    4. System defaults (config/defaults/gitshelf.json)
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig, description="Remote store connection")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Conflict retry policy")
    collections: dict[str, CollectionConfig] = Field(default_factory=dict, description="Named collections")
    state_file: str = Field(
        str(Path.home() / ".gitshelf" / "state.json"),
        description="Key-value state file (credentials, dirty flags, snapshots)",
    )

    def collection(self, name: str) -> CollectionConfig:
        """Look up a collection by name.

        Raises:
            ValueError: If the collection is not configured
        """
        if name not in self.collections:
            available = ", ".join(sorted(self.collections)) or "(none)"
            raise ValueError(f"Unknown collection: {name}. Available: {available}")
        return self.collections[name]
