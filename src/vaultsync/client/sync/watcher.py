"""Vault watcher with debouncing for real-time sync.

This module provides:
- VaultWatcher: Watches the vault using watchdog
- Coalescing: A later event for a path replaces the pending one
- Sync delay: Each change restarts a 3s timer; pending changes are
  dispatched once the vault has been quiet that long
- Dispatch: deletes, renames and edits go to the matching single-file
  operation of the reconciliation engine
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Protocol

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from vaultsync.client.sync.ignore import IgnorePatterns

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from vaultsync.core.config import SyncSettings

logger = logging.getLogger(__name__)


class ChangeDispatcher(Protocol):
    """Single-file operations a change is dispatched to."""

    def upload_file(self, path: str, only_if_modified: bool = False) -> Any: ...

    def delete_file(self, path: str) -> bool: ...

    def rename_file(self, old_path: str, new_path: str) -> bool: ...


class ChangeType(Enum):
    """Type of file system change."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass
class FileChange:
    """Represents a file system change event."""

    path: Path
    change_type: ChangeType
    is_directory: bool
    timestamp: float = field(default_factory=time.time)
    dest_path: Path | None = None  # For MOVED events


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class DebouncedEventHandler(FileSystemEventHandler):
    """Event handler that debounces rapid file system events."""

    def __init__(
        self,
        base_path: Path,
        dispatcher: ChangeDispatcher,
        settings: SyncSettings,
        sync_delay_s: float = 3.0,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the debounced handler.

        Args:
            base_path: Vault root being watched.
            dispatcher: Receives the coalesced changes.
            settings: Decides which extensions are synced.
            sync_delay_s: Quiet period after the last change before dispatching.
            ignore_patterns: Patterns for files to ignore.
        """
        super().__init__()
        self._base_path = base_path
        self._dispatcher = dispatcher
        self._settings = settings
        self._sync_delay_s = sync_delay_s
        self._ignore = ignore_patterns or IgnorePatterns()

        # Pending changes keyed by path
        self._pending: dict[str, FileChange] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def _schedule_flush(self) -> None:
        """Schedule a flush of pending changes after sync delay."""
        if self._timer:
            self._timer.cancel()

        self._timer = threading.Timer(self._sync_delay_s, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def flush(self) -> None:
        """Dispatch pending changes now."""
        with self._lock:
            if not self._pending:
                return

            changes = list(self._pending.values())
            self._pending.clear()
            if self._timer:
                self._timer.cancel()
                self._timer = None

        # Dispatch outside lock
        for change in changes:
            try:
                self._dispatch(change)
            except Exception:
                logger.exception(f"Failed to dispatch {change.change_type.value} of {change.path}")

    def _relative(self, path: Path) -> str | None:
        try:
            return path.relative_to(self._base_path).as_posix()
        except ValueError:
            logger.warning(f"Path {path} is not relative to {self._base_path}")
            return None

    def _is_syncable(self, rel_path: str) -> bool:
        return self._settings.is_syncable(PurePosixPath(rel_path).suffix)

    def _dispatch(self, change: FileChange) -> None:
        """Route a change to the matching engine operation."""
        # Directories have no sync record of their own
        if change.is_directory:
            return

        rel_path = self._relative(change.path)
        if rel_path is None:
            return

        if change.change_type is ChangeType.MOVED and change.dest_path is not None:
            dest = self._relative(change.dest_path)
            if dest is None or self._ignore.should_ignore(change.dest_path, self._base_path):
                # Moved out of the synced set
                if self._is_syncable(rel_path):
                    self._dispatcher.delete_file(rel_path)
                return
            if self._ignore.matches(rel_path):
                # Temp file renamed into place
                if self._is_syncable(dest):
                    self._dispatcher.upload_file(dest, only_if_modified=True)
                return
            if self._is_syncable(rel_path) or self._is_syncable(dest):
                logger.debug(f"Watcher: renamed {rel_path} -> {dest}")
                self._dispatcher.rename_file(rel_path, dest)
            return

        if not self._is_syncable(rel_path):
            return

        if change.change_type is ChangeType.DELETED:
            logger.debug(f"Watcher: deleted {rel_path}")
            self._dispatcher.delete_file(rel_path)
        else:
            logger.debug(f"Watcher: {change.change_type.value} {rel_path}")
            self._dispatcher.upload_file(rel_path, only_if_modified=True)

    def _handle_event(self, event: FileSystemEvent) -> None:
        """Handle a file system event with debouncing."""
        path = Path(_decode(event.src_path))
        is_move = isinstance(event, FileMovedEvent | DirMovedEvent)

        # Moves from an ignored temp name are kept: they finish atomic writes
        if not is_move and self._ignore.should_ignore(path, self._base_path):
            return

        now = time.time()

        if isinstance(event, FileCreatedEvent | DirCreatedEvent):
            change_type = ChangeType.CREATED
        elif isinstance(event, FileModifiedEvent | DirModifiedEvent):
            change_type = ChangeType.MODIFIED
        elif isinstance(event, FileDeletedEvent | DirDeletedEvent):
            change_type = ChangeType.DELETED
        elif is_move:
            change_type = ChangeType.MOVED
        else:
            return

        is_directory = isinstance(
            event,
            DirCreatedEvent | DirModifiedEvent | DirDeletedEvent | DirMovedEvent,
        )

        dest_path = None
        if is_move:
            dest_path = Path(_decode(event.dest_path))

        self.add_change(FileChange(
            path=path,
            change_type=change_type,
            is_directory=is_directory,
            timestamp=now,
            dest_path=dest_path,
        ))

    def add_change(self, change: FileChange) -> None:
        """Queue a change; later changes to the same path replace earlier ones."""
        with self._lock:
            self._pending[str(change.path)] = change
            self._schedule_flush()

    @property
    def pending_count(self) -> int:
        """Number of changes waiting to be dispatched."""
        with self._lock:
            return len(self._pending)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event."""
        self._handle_event(event)

    def stop(self) -> None:
        """Stop any pending timers."""
        if self._timer:
            self._timer.cancel()
            self._timer = None


class VaultWatcher:
    """Watches a vault and dispatches debounced changes to the engine."""

    def __init__(
        self,
        vault_path: Path,
        dispatcher: ChangeDispatcher,
        settings: SyncSettings,
        ignore_patterns: IgnorePatterns | None = None,
        sync_delay_s: float = 3.0,
    ) -> None:
        """Initialize the vault watcher.

        Args:
            vault_path: Vault directory to watch.
            dispatcher: Usually the ReconciliationEngine.
            settings: Decides which extensions are synced.
            ignore_patterns: Patterns to ignore (defaults plus .syncignore).
            sync_delay_s: Quiet period after the last change before dispatching.

        Raises:
            ValueError: If the vault path is not a directory.
        """
        self._vault_path = Path(vault_path).resolve()
        if not self._vault_path.is_dir():
            raise ValueError(f"Vault path must be a directory: {vault_path}")

        if ignore_patterns is None:
            ignore_patterns = IgnorePatterns()
            ignore_patterns.load_from_file(self._vault_path / ".syncignore")

        self._handler = DebouncedEventHandler(
            base_path=self._vault_path,
            dispatcher=dispatcher,
            settings=settings,
            sync_delay_s=sync_delay_s,
            ignore_patterns=ignore_patterns,
        )

        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def vault_path(self) -> Path:
        """Get the watched directory path."""
        return self._vault_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer.schedule(self._handler, str(self._vault_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.info(f"Watching {self._vault_path}")

    def stop(self) -> None:
        """Stop watching and dispatch whatever is still pending."""
        if not self._running:
            return

        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._handler.flush()
        self._running = False

    def __enter__(self) -> VaultWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
