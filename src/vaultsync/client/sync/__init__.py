"""Vault synchronization.

Architecture:
    VaultWatcher -> ReconciliationEngine -> ConflictResolver -> MergeService

Components:
- **ReconciliationEngine**: Two-phase passes (pull, then push) and the
  single-file upload/download/delete/rename operations
- **ConflictResolver**: Turns a rejected upload into a merge or a marked
  file plus a backup of the server version
- **MergeService**: Three-way merge, on the server or locally (merge3)
- **RemoteSnapshot**: Remote listing taken once per pass
- **VaultWatcher**: Watches the vault and dispatches debounced changes
"""

from vaultsync.client.sync.conflict import (
    ConflictResolver,
    generate_backup_path,
    generate_fallback_backup_path,
    has_conflict_markers,
    render_conflict_document,
)
from vaultsync.client.sync.engine import ReconciliationEngine
from vaultsync.client.sync.ignore import DEFAULT_IGNORE_PATTERNS, IgnorePatterns
from vaultsync.client.sync.merge import (
    LocalMergeService,
    MergeService,
    ServerMergeService,
)
from vaultsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from vaultsync.client.sync.types import (
    ConflictOutcome,
    ConflictResolution,
    DownloadError,
    PassOutcome,
    RemoteSnapshot,
    SyncError,
    SyncSummary,
    UploadOutcome,
    normalize_path,
)
from vaultsync.client.sync.watcher import VaultWatcher

__all__ = [
    # Engine
    "ReconciliationEngine",
    "RemoteSnapshot",
    # Conflicts
    "ConflictResolver",
    "generate_backup_path",
    "generate_fallback_backup_path",
    "has_conflict_markers",
    "render_conflict_document",
    # Merge
    "LocalMergeService",
    "MergeService",
    "ServerMergeService",
    # Ignore
    "DEFAULT_IGNORE_PATTERNS",
    "IgnorePatterns",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "NETWORK_EXCEPTIONS",
    "retry_with_backoff",
    # Types
    "ConflictOutcome",
    "ConflictResolution",
    "DownloadError",
    "PassOutcome",
    "SyncError",
    "SyncSummary",
    "UploadOutcome",
    "normalize_path",
    # Watcher
    "VaultWatcher",
]
