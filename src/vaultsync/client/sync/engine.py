"""Reconciliation engine coordinating vault synchronization.

This module provides:
- ReconciliationEngine: Runs two-phase passes (download, then upload) and
  the single-file operations the vault watcher dispatches
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, TypeVar

from vaultsync.client.api import NotFoundError, RevisionConflictError
from vaultsync.client.notifications import Notifier
from vaultsync.client.state import MetadataStoreError
from vaultsync.client.sync.conflict import ConflictResolver, has_conflict_markers
from vaultsync.client.sync.merge import LocalMergeService, ServerMergeService
from vaultsync.client.sync.retry import retry_with_backoff
from vaultsync.client.sync.types import (
    ConflictOutcome,
    DownloadError,
    PassOutcome,
    RemoteSnapshot,
    SyncSummary,
    UploadOutcome,
    normalize_path,
)
from vaultsync.core.hashing import compute_content_hash

if TYPE_CHECKING:
    from vaultsync.client.api import HTTPClient, RemoteFileDescriptor
    from vaultsync.client.filetree import FileTree, LocalFile
    from vaultsync.client.state import MetadataStore
    from vaultsync.client.sync.merge import MergeService
    from vaultsync.core.config import ServerConfig, SyncSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationEngine:
    """Keeps a local vault and the remote store converged.

    A pass first pulls every remote file newer than the local record, then
    pushes every syncable local file changed since it was last synced.
    Only one pass runs at a time; a second caller gets ``PassOutcome.BUSY``.
    """

    def __init__(
        self,
        transport: HTTPClient,
        store: MetadataStore,
        tree: FileTree,
        settings: SyncSettings,
        server_config: ServerConfig,
        notifier: Notifier | None = None,
        merge_service: MergeService | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the engine.

        Args:
            transport: Remote sync transport.
            store: Per-path metadata store.
            tree: Local vault.
            settings: Device and sync settings.
            server_config: Connection settings; a pass needs its token.
            notifier: Notification sink (log-only by default).
            merge_service: Merge implementation. Defaults to the one named
                by ``settings.merge_strategy``.
            clock: Source of ``last_synced_at`` timestamps.
        """
        self._transport = transport
        self._store = store
        self._tree = tree
        self._settings = settings
        self._server_config = server_config
        self._notifier = notifier or Notifier(desktop=False)
        self._clock = clock
        self._pass_lock = threading.Lock()

        if merge_service is None:
            if settings.merge_strategy == "local":
                merge_service = LocalMergeService()
            else:
                merge_service = ServerMergeService(transport)
        self._resolver = ConflictResolver(
            transport,
            tree,
            store,
            merge_service,
            self._notifier,
            network_call=self._call,
        )

    @property
    def is_syncing(self) -> bool:
        """Check whether a pass is in flight."""
        return self._pass_lock.locked()

    def _call(self, func: Callable[[], T], description: str) -> T:
        return retry_with_backoff(
            func,
            max_retries=self._settings.max_retries,
            initial_backoff=self._settings.initial_backoff,
            description=description,
        )

    def _fail(self, summary: SyncSummary, action: str, path: str, error: Exception) -> None:
        message = f"Failed to {action} {path}: {error}"
        logger.error(message)
        self._notifier.error(message)
        summary.failed += 1
        summary.errors.append(message)

    # === Reconciliation pass ===

    def reconcile(
        self,
        silent: bool = False,
        cancel: threading.Event | None = None,
    ) -> SyncSummary:
        """Run one full reconciliation pass.

        Never raises: every outcome is reported through the summary.

        Args:
            silent: Suppress the start/completion notifications. Errors and
                conflicts are always reported.
            cancel: Stops the pass at the next file boundary when set.

        Returns:
            SyncSummary of the pass.
        """
        if not self._server_config.has_token:
            message = "Not authenticated. Please configure your API token."
            self._notifier.error(message)
            return SyncSummary(outcome=PassOutcome.NOT_AUTHENTICATED, message=message)

        if not self._pass_lock.acquire(blocking=False):
            message = "Sync already in progress"
            logger.info(message)
            if not silent:
                self._notifier.info(message)
            return SyncSummary(outcome=PassOutcome.BUSY, message=message)

        try:
            return self._run_pass(silent, cancel)
        finally:
            self._pass_lock.release()

    def _run_pass(self, silent: bool, cancel: threading.Event | None) -> SyncSummary:
        if not silent:
            self._notifier.sync_started()
        logger.info("Starting sync pass")

        try:
            snapshot = self._call(
                lambda: RemoteSnapshot.fetch(self._transport), "list remote files"
            )
        except Exception as e:
            message = f"Sync failed: could not list remote files: {e}"
            logger.error(message)
            self._notifier.error(message)
            return SyncSummary(outcome=PassOutcome.ABORTED, message=message, errors=[message])

        summary = SyncSummary()
        failed_pulls: set[str] = set()
        logger.debug(f"Remote snapshot has {len(snapshot)} files")

        # 1. Pull remote changes
        for remote in snapshot:
            if cancel is not None and cancel.is_set():
                return self._cancelled(summary)
            try:
                if self._pull(remote):
                    summary.downloaded += 1
            except Exception as e:
                self._fail(summary, "download", remote.path, e)
                failed_pulls.add(remote.path)

        # 2. Push local changes. Materialized so files created by conflict
        # handling are left for the next pass. Paths whose download step
        # failed wait for the next pass too.
        try:
            local_files = [
                f for f in self._tree.iter_files() if self._settings.is_syncable(f.extension)
            ]
        except OSError as e:
            self._fail(summary, "scan", "vault", e)
            local_files = []
        for local in local_files:
            if cancel is not None and cancel.is_set():
                return self._cancelled(summary)
            if local.path in failed_pulls:
                logger.debug(f"Skipping upload of {local.path}: download step failed")
                continue
            try:
                if not self._needs_push(local):
                    continue
                outcome = self._push(local.path)
            except Exception as e:
                self._fail(summary, "upload", local.path, e)
                continue
            self._tally(summary, local.path, outcome)

        logger.info(f"Sync pass complete: {summary.describe()}")
        if not silent:
            self._notifier.sync_complete(f"Sync completed: {summary.describe()}")
        return summary

    def _cancelled(self, summary: SyncSummary) -> SyncSummary:
        summary.outcome = PassOutcome.CANCELLED
        summary.message = "Sync cancelled"
        logger.info(f"Sync pass cancelled: {summary.describe()}")
        return summary

    @staticmethod
    def _tally(summary: SyncSummary, path: str, outcome: UploadOutcome) -> None:
        if outcome is UploadOutcome.UPLOADED:
            summary.uploaded += 1
        elif outcome is UploadOutcome.MERGED:
            summary.uploaded += 1
            summary.merged += 1
        elif outcome is UploadOutcome.CONFLICT:
            summary.conflicts.append(path)
        elif outcome is UploadOutcome.FAILED:
            summary.failed += 1
            summary.errors.append(f"Failed to upload {path}")

    # === Download side ===

    def _pull(self, remote: RemoteFileDescriptor) -> bool:
        """Bring one remote file down if it is newer. Returns True if written."""
        path = remote.path
        record = self._store.get(path)
        local_revision = record.revision if record else 0
        if record is not None and remote.revision <= local_revision:
            return False

        if self._store.get_conflict(path) is not None:
            logger.debug(f"Skipping download of {path}: manual resolution pending")
            return False

        if self._tree.exists(path) and self._settings.is_syncable(PurePosixPath(path).suffix):
            if record is None:
                content = self._tree.read(path)
                if compute_content_hash(content) == remote.content_hash:
                    # Same content on both sides, adopt without transfer
                    self._mark_synced(path, content, remote.revision, remote.content_hash)
                    logger.info(f"Adopted {path} at r{remote.revision} (identical content)")
                    return False
                logger.info(f"Not overwriting untracked local copy of {path}; will upload")
                return False
            if self._tree.stat(path).mtime > record.last_synced_at:
                logger.info(f"Not overwriting unsynced local edits to {path}; will upload")
                return False

        self._download(path, remote.revision)
        return True

    def _download(self, path: str, revision: int | None) -> None:
        """Fetch a file and write it into the vault.

        Raises:
            DownloadError: If the server answers with an older revision.
        """
        result = self._call(
            lambda: self._transport.download_file(path, revision), f"download {path}"
        )
        new_revision = result.file.revision or revision or 0
        record = self._store.get(path)
        if record is not None and new_revision < record.revision:
            raise DownloadError(
                f"server returned r{new_revision}, older than synced r{record.revision}"
            )
        if result.is_conflict:
            self._notifier.warning(f'Server marked "{path}" as conflicted')

        self._tree.write(path, result.content)
        self._store.upsert(
            path,
            content_hash=result.file.content_hash or compute_content_hash(result.content),
            revision=new_revision,
            parent_revision=new_revision,
            size=result.file.size or len(result.content.encode("utf-8")),
            last_synced_at=self._clock(),
            device_id=self._settings.device_id,
        )
        logger.info(f"Downloaded {path} (r{new_revision})")

    def download_file(self, path: str, revision: int | None = None) -> bool:
        """Download one file, the latest revision unless one is given.

        Returns:
            True if the file was written.
        """
        path = normalize_path(path)
        try:
            self._download(path, revision)
            return True
        except Exception as e:
            message = f"Failed to download {path}: {e}"
            logger.error(message)
            self._notifier.error(message)
            return False

    # === Upload side ===

    def _needs_push(self, local: LocalFile) -> bool:
        record = self._store.get(local.path)
        return record is None or local.mtime > record.last_synced_at

    def _push(
        self,
        path: str,
        parent_revision: int | None = None,
        resolve_conflicts: bool = True,
    ) -> UploadOutcome:
        """Upload one file. Errors other than revision conflicts propagate."""
        content = self._tree.read(path)

        if parent_revision is None:
            conflict = self._store.get_conflict(path)
            if conflict is not None:
                if has_conflict_markers(content):
                    logger.info(f"Skipping {path}: conflict markers still present")
                    return UploadOutcome.SKIPPED
                parent_revision = conflict.server_revision
            else:
                record = self._store.get(path)
                parent_revision = record.revision if record else 0

        claimed = parent_revision
        try:
            remote = self._call(
                lambda: self._transport.upload_file(
                    path, content, claimed, self._settings.device_id
                ),
                f"upload {path}",
            )
        except RevisionConflictError as e:
            if not resolve_conflicts:
                logger.warning(f"Upload of {path} rejected again (server at r{e.context.current_revision})")
                return UploadOutcome.CONFLICT
            return self._resolve(path, e)

        self._mark_synced(path, content, remote.revision, remote.content_hash)
        logger.info(f"Uploaded {path} (r{remote.revision})")
        return UploadOutcome.UPLOADED

    def _mark_synced(
        self, path: str, content: str, revision: int, content_hash: str = ""
    ) -> None:
        """Record that the local content is the server's revision."""
        self._store.upsert(
            path,
            content_hash=content_hash or compute_content_hash(content),
            revision=revision,
            parent_revision=revision,
            size=len(content.encode("utf-8")),
            last_synced_at=self._clock(),
            device_id=self._settings.device_id,
        )
        if self._store.get_conflict(path) is not None:
            self._store.clear_conflict(path)
            logger.info(f"Conflict on {path} resolved")

    def _resolve(self, path: str, error: RevisionConflictError) -> UploadOutcome:
        resolution = self._resolver.resolve(
            path,
            error.context,
            lambda p, parent: self._push(p, parent_revision=parent, resolve_conflicts=False),
        )
        if resolution.outcome is ConflictOutcome.MERGED:
            return UploadOutcome.MERGED
        if resolution.outcome is ConflictOutcome.IN_SYNC:
            self._mark_synced(path, self._tree.read(path), error.context.current_revision)
            return UploadOutcome.SKIPPED
        if resolution.outcome is ConflictOutcome.MANUAL:
            return UploadOutcome.CONFLICT
        logger.error(resolution.message)
        self._notifier.error(resolution.message)
        return UploadOutcome.FAILED

    def upload_file(self, path: str, only_if_modified: bool = False) -> UploadOutcome:
        """Upload one file.

        Args:
            path: Vault path.
            only_if_modified: Skip files not changed since their last sync.

        Returns:
            UploadOutcome of the attempt.
        """
        path = normalize_path(path)
        try:
            if only_if_modified and not self._needs_push(self._tree.stat(path)):
                return UploadOutcome.SKIPPED
            return self._push(path)
        except Exception as e:
            message = f"Failed to upload {path}: {e}"
            logger.error(message)
            self._notifier.error(message)
            return UploadOutcome.FAILED

    # === Deletes and renames ===

    def delete_file(self, path: str) -> bool:
        """Delete a file on the server after it was deleted locally.

        The local record is removed whatever the server answers.

        Returns:
            True if the server no longer has the file.
        """
        path = normalize_path(path)
        record = self._store.get(path)
        parent_revision = record.revision if record else 0
        deleted = False
        try:
            result = self._call(
                lambda: self._transport.delete_file(
                    path, parent_revision, self._settings.device_id
                ),
                f"delete {path}",
            )
            if result.conflict:
                message = f'Conflict when deleting "{path}": it was changed on another device'
                logger.warning(message)
                self._notifier.warning(message)
            deleted = result.deleted
            logger.info(f"Deleted {path} on server")
        except NotFoundError:
            deleted = True
        except Exception as e:
            message = f"Failed to delete {path}: {e}"
            logger.error(message)
            self._notifier.error(message)

        try:
            self._store.delete(path)
        except MetadataStoreError as e:
            logger.error(f"Failed to remove metadata for {path}: {e}")
            deleted = False
        return deleted

    def rename_file(self, old_path: str, new_path: str) -> bool:
        """Propagate a local rename: delete the old path, upload the new one.

        The metadata record (and any open conflict) moves to the new path
        with its revisions reset, since the server has never seen it.

        Returns:
            True if both the delete and the upload went through.
        """
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        record = self._store.get(old_path)
        parent_revision = record.revision if record else 0

        deleted = False
        try:
            result = self._call(
                lambda: self._transport.delete_file(
                    old_path, parent_revision, self._settings.device_id
                ),
                f"delete {old_path}",
            )
            if result.conflict:
                self._notifier.warning(f'Conflict when deleting "{old_path}" during rename')
            deleted = result.deleted
        except NotFoundError:
            deleted = True
        except Exception as e:
            message = f"Failed to delete {old_path} during rename: {e}"
            logger.error(message)
            self._notifier.error(message)

        try:
            self._store.rename(old_path, new_path)
            if record is not None:
                self._store.upsert(new_path, revision=0, parent_revision=0, last_synced_at=0.0)
            conflict = self._store.get_conflict(new_path)
            if conflict is not None:
                conflict.server_revision = 0
                self._store.add_conflict(conflict)
        except MetadataStoreError as e:
            logger.error(f"Failed to move metadata {old_path} -> {new_path}: {e}")
            return False

        if not self._settings.is_syncable(PurePosixPath(new_path).suffix):
            logger.info(f"Renamed {old_path} -> {new_path} (not syncable, not uploaded)")
            return deleted

        outcome = self.upload_file(new_path)
        logger.info(f"Renamed {old_path} -> {new_path}: {outcome.name.lower()}")
        return deleted and outcome in (UploadOutcome.UPLOADED, UploadOutcome.MERGED)
