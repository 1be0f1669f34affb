"""Local sync metadata for the vault.

This module provides:
- MetadataStore: SQLite-backed per-path sync state
- FileSyncRecord: What this device last confirmed for a path
- ConflictRecord: Sidecar record of an unresolved manual conflict

Architecture:
    Every mutation runs in autocommit mode, so a crash mid-pass leaves the
    store consistent with the last completed file step. Read-merge-write
    cycles for one path are serialized by a per-path lock; different paths
    only share the connection lock.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class MetadataStoreError(Exception):
    """The metadata database could not be opened or written."""


@dataclass
class FileSyncRecord:
    """Sync state of one path as last confirmed by this device.

    Attributes:
        path: Relative POSIX path inside the vault.
        content_hash: SHA-256 of the content at last sync.
        revision: Server revision last confirmed for this path.
        parent_revision: Merge base for the next conflict. Always the
            revision this device last saw as authoritative.
        size: Byte size at last sync.
        last_synced_at: Epoch seconds of the last sync-caused write.
        device_id: Device that performed the last sync action.
    """

    path: str
    content_hash: str = ""
    revision: int = 0
    parent_revision: int = 0
    size: int = 0
    last_synced_at: float = 0.0
    device_id: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> FileSyncRecord:
        """Create FileSyncRecord from database row."""
        return cls(
            path=row["path"],
            content_hash=row["content_hash"],
            revision=row["revision"],
            parent_revision=row["parent_revision"],
            size=row["size"],
            last_synced_at=row["last_synced_at"],
            device_id=row["device_id"],
        )


RECORD_FIELDS = frozenset(f.name for f in fields(FileSyncRecord)) - {"path"}


@dataclass
class ConflictRecord:
    """Structured half of a manual-resolution artifact.

    The human-readable half is the marked file in the vault; this record
    keeps the backup location and the server revision the user resolved
    against, so the resolved file can be uploaded on top of it.
    """

    path: str
    backup_path: str
    server_revision: int
    local_hash: str
    server_hash: str
    created_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ConflictRecord:
        """Create ConflictRecord from database row."""
        return cls(
            path=row["path"],
            backup_path=row["backup_path"],
            server_revision=row["server_revision"],
            local_hash=row["local_hash"],
            server_hash=row["server_hash"],
            created_at=row["created_at"],
        )


class MetadataStore:
    """Persistent mapping from vault path to sync state."""

    def __init__(self, db_path: Path, timeout: float = 5.0) -> None:
        """Open (or create) the metadata database.

        A malformed database file is moved aside and replaced by an empty
        one. Operational failures (locked, unreadable, I/O errors) leave the
        file alone.

        Args:
            db_path: Path to SQLite database file.
            timeout: Seconds to wait for a lock held by another connection.

        Raises:
            MetadataStoreError: If the database cannot be opened.
        """
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()
        self._path_locks: dict[str, threading.Lock] = {}
        self._path_locks_guard = threading.Lock()

        try:
            self._conn = self._open()
        except sqlite3.OperationalError as e:
            raise MetadataStoreError(
                f"Cannot open metadata store {self._db_path}: {e}"
            ) from e
        except sqlite3.DatabaseError as e:
            backup = self._quarantine(e)
            logger.warning(
                f"Metadata store {self._db_path} is malformed ({e}); "
                f"moved to {backup.name} and starting empty"
            )
            self._conn = self._open()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._timeout,
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS file_records (
                    path TEXT PRIMARY KEY,
                    content_hash TEXT NOT NULL DEFAULT '',
                    revision INTEGER NOT NULL DEFAULT 0,
                    parent_revision INTEGER NOT NULL DEFAULT 0,
                    size INTEGER NOT NULL DEFAULT 0,
                    last_synced_at REAL NOT NULL DEFAULT 0,
                    device_id TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS conflicts (
                    path TEXT PRIMARY KEY,
                    backup_path TEXT NOT NULL,
                    server_revision INTEGER NOT NULL,
                    local_hash TEXT NOT NULL,
                    server_hash TEXT NOT NULL,
                    created_at REAL NOT NULL
                );
            """)
            conn.execute("SELECT COUNT(*) FROM file_records").fetchone()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _quarantine(self, error: Exception) -> Path:
        stamp = time.strftime("%Y%m%d-%H%M%S")
        backup = self._db_path.with_name(f"{self._db_path.name}.corrupt-{stamp}")
        self._db_path.replace(backup)
        for suffix in ("-wal", "-shm"):
            sidecar = self._db_path.with_name(self._db_path.name + suffix)
            if sidecar.exists():
                sidecar.unlink()
        return backup

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> MetadataStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _path_lock(self, path: str) -> threading.Lock:
        with self._path_locks_guard:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = self._path_locks[path] = threading.Lock()
            return lock

    def _write(self, sql: str, params: tuple[Any, ...]) -> None:
        try:
            with self._lock:
                self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise MetadataStoreError(f"Failed to persist metadata: {e}") from e

    # === File records ===

    def get(self, path: str) -> FileSyncRecord | None:
        """Get the record for a path, or None if the path was never synced."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM file_records WHERE path = ?",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return FileSyncRecord.from_row(row)

    def list_records(self) -> list[FileSyncRecord]:
        """List all records ordered by path."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM file_records ORDER BY path"
            ).fetchall()
        return [FileSyncRecord.from_row(row) for row in rows]

    def upsert(self, path: str, **changes: Any) -> FileSyncRecord:
        """Merge fields into the record for a path and persist it.

        Missing records start from zero defaults.

        Raises:
            TypeError: If a field name is unknown.
            MetadataStoreError: If the write fails.
        """
        unknown = set(changes) - RECORD_FIELDS
        if unknown:
            raise TypeError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")

        with self._path_lock(path):
            current = self.get(path) or FileSyncRecord(path=path)
            merged = FileSyncRecord(**{**asdict(current), **changes, "path": path})
            self._write(
                """
                INSERT OR REPLACE INTO file_records (
                    path, content_hash, revision, parent_revision,
                    size, last_synced_at, device_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    merged.path,
                    merged.content_hash,
                    merged.revision,
                    merged.parent_revision,
                    merged.size,
                    merged.last_synced_at,
                    merged.device_id,
                ),
            )
        return merged

    def delete(self, path: str) -> None:
        """Remove the record (and any conflict record) for a path."""
        with self._path_lock(path):
            self._write("DELETE FROM file_records WHERE path = ?", (path,))
            self._write("DELETE FROM conflicts WHERE path = ?", (path,))

    def rename(self, old_path: str, new_path: str) -> None:
        """Move a record to a new path, keeping every other field."""
        with self._path_lock(old_path):
            if self.get(old_path) is None:
                return
            try:
                with self._lock:
                    self._conn.execute("BEGIN")
                    try:
                        self._conn.execute(
                            "DELETE FROM file_records WHERE path = ?", (new_path,)
                        )
                        self._conn.execute(
                            "UPDATE file_records SET path = ? WHERE path = ?",
                            (new_path, old_path),
                        )
                        self._conn.execute(
                            "DELETE FROM conflicts WHERE path = ?", (new_path,)
                        )
                        self._conn.execute(
                            "UPDATE conflicts SET path = ? WHERE path = ?",
                            (new_path, old_path),
                        )
                    except sqlite3.Error:
                        self._conn.execute("ROLLBACK")
                        raise
                    self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise MetadataStoreError(f"Failed to rename metadata: {e}") from e

    # === Conflict sidecar ===

    def add_conflict(self, record: ConflictRecord) -> None:
        """Store (or replace) the open conflict for a path."""
        self._write(
            """
            INSERT OR REPLACE INTO conflicts (
                path, backup_path, server_revision, local_hash, server_hash, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.path,
                record.backup_path,
                record.server_revision,
                record.local_hash,
                record.server_hash,
                record.created_at,
            ),
        )

    def get_conflict(self, path: str) -> ConflictRecord | None:
        """Get the open conflict for a path."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM conflicts WHERE path = ?",
                (path,),
            ).fetchone()
        return ConflictRecord.from_row(row) if row else None

    def list_conflicts(self) -> list[ConflictRecord]:
        """List open conflicts, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM conflicts ORDER BY created_at, path"
            ).fetchall()
        return [ConflictRecord.from_row(row) for row in rows]

    def clear_conflict(self, path: str) -> None:
        """Forget the open conflict for a path."""
        self._write("DELETE FROM conflicts WHERE path = ?", (path,))
