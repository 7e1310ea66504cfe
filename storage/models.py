"""Shared storage domain models - provider-neutral result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FailureReason(str, Enum):
    CONFLICT = "conflict"
    AUTH = "auth"
    NETWORK = "network"
    REJECTED = "rejected"


@dataclass(frozen=True)
class FileContent:
    path: str
    content: bytes
    revision: str


@dataclass(frozen=True)
class DirEntry:
    name: str
    path: str
    type: str  # "file" | "dir" | "symlink" | "submodule"
    revision: str | None = None


@dataclass(frozen=True)
class DirectoryListing:
    path: str
    entries: list[DirEntry] = field(default_factory=list)

    def files(self) -> list[DirEntry]:
        return [e for e in self.entries if e.type == "file"]


@dataclass(frozen=True)
class WriteResult:
    """Tagged outcome of a write/delete: success carries the new revision."""

    ok: bool
    revision: str | None = None
    reason: FailureReason | None = None
    status: int | None = None
    attempts: int = 1
    detail: str = ""

    @classmethod
    def success(cls, revision: str | None, *, status: int | None = None, attempts: int = 1) -> WriteResult:
        return cls(ok=True, revision=revision, status=status, attempts=attempts)

    @classmethod
    def failure(
        cls,
        reason: FailureReason,
        *,
        status: int | None = None,
        attempts: int = 1,
        detail: str = "",
    ) -> WriteResult:
        return cls(ok=False, reason=reason, status=status, attempts=attempts, detail=detail)
