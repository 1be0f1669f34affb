"""Pytest fixtures for integration tests.

This module provides an in-memory sync server with real revision semantics
and fixtures for simulated devices, each with its own vault folder,
metadata store and reconciliation engine.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

from vaultsync.client.api import (
    ConflictContext,
    DeleteResult,
    DownloadedFile,
    MergeResult,
    NotFoundError,
    RemoteFileDescriptor,
    RevisionConflictError,
)
from vaultsync.client.filetree import LocalFileTree
from vaultsync.client.notifications import Notifier
from vaultsync.client.state import MetadataStore
from vaultsync.client.sync import LocalMergeService, ReconciliationEngine
from vaultsync.core.config import ServerConfig, SyncSettings
from vaultsync.core.hashing import compute_content_hash


@dataclass
class FakeSyncServer:
    """In-memory sync server.

    Each path keeps its full content history; revision N is history[N - 1].
    A write is accepted only if it claims the current revision as parent.
    """

    history: dict[str, list[str]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    offline: bool = False
    listing_fails: bool = False

    # === Helpers for tests ===

    def put(self, path: str, content: str) -> int:
        """Write a revision as if from another device."""
        self.history.setdefault(path, []).append(content)
        return len(self.history[path])

    def revision(self, path: str) -> int:
        return len(self.history.get(path, []))

    def content(self, path: str, revision: int | None = None) -> str:
        revisions = self.history[path]
        return revisions[(revision or len(revisions)) - 1]

    def _descriptor(self, path: str, revision: int) -> RemoteFileDescriptor:
        content = self.content(path, revision)
        return RemoteFileDescriptor(
            path=path,
            revision=revision,
            content_hash=compute_content_hash(content),
            size=len(content.encode("utf-8")),
        )

    def _check_online(self) -> None:
        if self.offline:
            raise httpx.ConnectError("server unreachable")

    # === Transport interface ===

    def list_files(self) -> list[RemoteFileDescriptor]:
        self.calls.append("list")
        self._check_online()
        if self.listing_fails:
            raise httpx.ConnectError("listing failed")
        return [self._descriptor(path, self.revision(path)) for path in sorted(self.history)]

    def upload_file(
        self, path: str, content: str, parent_revision: int, device_id: str
    ) -> RemoteFileDescriptor:
        self.calls.append(f"upload {path}@{parent_revision}")
        self._check_online()
        current = self.revision(path)
        if parent_revision != current:
            raise RevisionConflictError(
                "Conflict detected",
                ConflictContext(current_revision=current, your_parent_revision=parent_revision),
            )
        return self._descriptor(path, self.put(path, content))

    def download_file(self, path: str, revision: int | None = None) -> DownloadedFile:
        self.calls.append(f"download {path}@{revision}")
        self._check_online()
        if path not in self.history or (revision or 0) > self.revision(path):
            raise NotFoundError("Resource not found", 404)
        descriptor = self._descriptor(path, revision or self.revision(path))
        return DownloadedFile(
            file=descriptor,
            parent_revision=descriptor.revision,
            content=self.content(path, descriptor.revision),
        )

    def delete_file(self, path: str, parent_revision: int, device_id: str) -> DeleteResult:
        self.calls.append(f"delete {path}@{parent_revision}")
        self._check_online()
        if path not in self.history:
            raise NotFoundError("Resource not found", 404)
        conflict = parent_revision != self.revision(path)
        del self.history[path]
        return DeleteResult(deleted=True, conflict=conflict)

    def attempt_auto_merge(
        self,
        file_path: str,
        our_content: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult:
        self.calls.append(f"merge {file_path}")
        self._check_online()
        return LocalMergeService().merge(
            file_path,
            ancestor=self.content(file_path, ancestor_revision),
            ours=our_content,
            theirs=self.content(file_path, their_revision),
            ancestor_revision=ancestor_revision,
            their_revision=their_revision,
        )


@dataclass
class FakeClock:
    """Clock for last_synced_at, kept ahead of real file mtimes.

    Files written for real always look older than the last sync; edits made
    with SyncDevice.edit_file get an mtime between two ticks of this clock.
    """

    now: float = field(default_factory=lambda: time.time() + 1000)

    def __call__(self) -> float:
        return self.now

    def tick(self, seconds: float = 10.0) -> float:
        self.now += seconds
        return self.now


@dataclass
class SyncDevice:
    """Container for a simulated device."""

    name: str
    tree: LocalFileTree
    store: MetadataStore
    engine: ReconciliationEngine
    notifier: MagicMock
    clock: FakeClock

    @property
    def vault(self) -> Path:
        return self.tree.root

    def create_file(self, relative_path: str, content: str) -> Path:
        """Create a file in the vault."""
        file_path = self.vault / relative_path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return file_path

    def edit_file(self, relative_path: str, content: str) -> Path:
        """Edit a file so it is newer than its last sync."""
        file_path = self.create_file(relative_path, content)
        edited_at = self.clock.tick()
        os.utime(file_path, (edited_at, edited_at))
        self.clock.tick()
        return file_path

    def read_file(self, relative_path: str) -> str:
        """Read a file from the vault."""
        return (self.vault / relative_path).read_text(encoding="utf-8")

    def file_exists(self, relative_path: str) -> bool:
        """Check if a file exists in the vault."""
        return (self.vault / relative_path).exists()

    def vault_files(self) -> list[str]:
        """All synced-tree paths in the vault."""
        return sorted(f.path for f in self.tree.iter_files())


@pytest.fixture
def server() -> FakeSyncServer:
    """Empty in-memory sync server."""
    return FakeSyncServer()


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(server_url="http://sync.test", token="test-token")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_device(
    tmp_path: Path,
    server: FakeSyncServer,
    server_config: ServerConfig,
    clock: FakeClock,
) -> Generator[Callable[..., SyncDevice], None, None]:
    """Factory creating devices that share the fake server."""
    stores: list[MetadataStore] = []

    def _make(name: str = "device-a", merge_strategy: str = "server") -> SyncDevice:
        tree = LocalFileTree(tmp_path / name / "vault")
        store = MetadataStore(tmp_path / name / "state.db")
        stores.append(store)
        notifier = MagicMock(spec=Notifier)
        settings = SyncSettings(
            device_id=name,
            device_name=name,
            max_retries=0,
            merge_strategy=merge_strategy,
        )
        engine = ReconciliationEngine(
            server, store, tree, settings, server_config, notifier=notifier, clock=clock
        )
        return SyncDevice(
            name=name, tree=tree, store=store, engine=engine, notifier=notifier, clock=clock
        )

    yield _make

    for store in stores:
        store.close()


@pytest.fixture
def device(make_device: Callable[..., SyncDevice]) -> SyncDevice:
    """A single device."""
    return make_device("device-a")
