"""Core module - Shared configuration and hashing."""

from vaultsync.core.config import (
    DEFAULT_SYNCABLE_EXTENSIONS,
    MERGE_STRATEGIES,
    ServerConfig,
    SyncSettings,
)
from vaultsync.core.hashing import compute_content_hash

__all__ = [
    # Config
    "DEFAULT_SYNCABLE_EXTENSIONS",
    "MERGE_STRATEGIES",
    "ServerConfig",
    "SyncSettings",
    # Hashing
    "compute_content_hash",
]
