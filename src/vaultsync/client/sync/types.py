"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, DownloadError: Exception classes
- PassOutcome, SyncSummary: Result of a reconciliation pass
- UploadOutcome: Result of a single upload attempt
- ConflictOutcome, ConflictResolution: Result of conflict handling
- RemoteSnapshot: Point-in-time listing of the remote store
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from vaultsync.client.api import RemoteFileDescriptor


class SyncError(Exception):
    """Base exception for sync errors."""


class DownloadError(SyncError):
    """Failed to download a file."""


class PassOutcome(Enum):
    """How a reconciliation pass ended."""

    COMPLETED = auto()  # Ran to the end, possibly with per-file failures
    BUSY = auto()  # Another pass was in flight, nothing done
    NOT_AUTHENTICATED = auto()  # No credential, no network call made
    ABORTED = auto()  # Remote snapshot unavailable, nothing mutated
    CANCELLED = auto()  # Stopped at a file boundary


class UploadOutcome(Enum):
    """Result of a single upload attempt."""

    UPLOADED = auto()
    MERGED = auto()  # Rejected, auto-merged, merged content uploaded
    CONFLICT = auto()  # Rejected, left for manual resolution
    SKIPPED = auto()  # Nothing uploaded (pending manual resolution, unchanged)
    FAILED = auto()


class ConflictOutcome(Enum):
    """Terminal state of the conflict resolver."""

    MERGED = auto()
    IN_SYNC = auto()  # Local content already equals the server version
    MANUAL = auto()
    ERROR = auto()


@dataclass
class ConflictResolution:
    """Result of conflict resolution.

    Attributes:
        outcome: Which terminal state the resolver reached.
        backup_path: Vault path of the server-version backup (MANUAL only).
        message: Human-readable explanation.
    """

    outcome: ConflictOutcome
    backup_path: str | None = None
    message: str = ""


@dataclass
class SyncSummary:
    """Result of a reconciliation pass."""

    outcome: PassOutcome = PassOutcome.COMPLETED
    downloaded: int = 0
    uploaded: int = 0
    failed: int = 0
    merged: int = 0
    conflicts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def completed(self) -> bool:
        """Check whether the pass ran to the end."""
        return self.outcome is PassOutcome.COMPLETED

    @property
    def changed(self) -> bool:
        """Check whether anything was transferred."""
        return bool(self.downloaded or self.uploaded or self.conflicts)

    def describe(self) -> str:
        """One-line human summary."""
        if self.outcome is not PassOutcome.COMPLETED and self.message:
            return self.message
        parts = []
        if self.downloaded:
            parts.append(f"{self.downloaded} downloaded")
        if self.uploaded:
            parts.append(f"{self.uploaded} uploaded")
        if self.merged:
            parts.append(f"{self.merged} merged")
        if self.conflicts:
            parts.append(f"{len(self.conflicts)} conflicts")
        if self.failed:
            parts.append(f"{self.failed} failed")
        return ", ".join(parts) if parts else "Up to date"


class FileLister(Protocol):
    """Anything that can list the remote store."""

    def list_files(self) -> list[RemoteFileDescriptor]:
        """List every remote file."""
        ...


class RemoteSnapshot:
    """Remote files indexed by path, fetched once per pass."""

    def __init__(self, files: list[RemoteFileDescriptor]) -> None:
        self._files = {f.path: f for f in files}

    @classmethod
    def fetch(cls, transport: FileLister) -> RemoteSnapshot:
        """List the remote store. Errors propagate to the caller."""
        return cls(transport.list_files())

    def get(self, path: str) -> RemoteFileDescriptor | None:
        """Get the descriptor for a path."""
        return self._files.get(path)

    def paths(self) -> list[str]:
        """All remote paths, sorted."""
        return sorted(self._files)

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __iter__(self) -> Iterator[RemoteFileDescriptor]:
        return iter(self._files.values())

    def __len__(self) -> int:
        return len(self._files)


def normalize_path(path: str | Path) -> str:
    """Vault-relative POSIX path with no leading slash."""
    return str(path).replace("\\", "/").lstrip("/")
