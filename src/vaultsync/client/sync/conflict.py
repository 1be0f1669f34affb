"""Conflict resolution for rejected uploads.

Invoked when the server rejects an upload because the claimed parent
revision is stale. Resolution is a small state machine:

1. Attempt merge: when a common ancestor exists, fetch the server's current
   content and the ancestor, and hand (ancestor, ours, theirs) to the merge
   service.
2. Merged: the merge is clean, so the merged content is written locally and
   uploaded claiming the server's current revision as parent.
3. Manual: the merge failed, left conflicts, had no ancestor, or a network
   call failed. The server version is saved to a backup file, the local file
   is rewritten with both versions between conflict markers, and a
   ConflictRecord points at the backup. Revisions in the metadata store are
   left alone.

A local copy identical to the server version needs no resolution and ends
in ``ConflictOutcome.IN_SYNC``. The resolver never raises; failures end in
``ConflictOutcome.ERROR``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, TypeVar

from vaultsync.client.api import APIError
from vaultsync.client.state import ConflictRecord
from vaultsync.client.sync.retry import NETWORK_EXCEPTIONS
from vaultsync.client.sync.types import (
    ConflictOutcome,
    ConflictResolution,
    UploadOutcome,
)
from vaultsync.core.hashing import compute_content_hash

if TYPE_CHECKING:
    from vaultsync.client.api import ConflictContext, HTTPClient
    from vaultsync.client.filetree import FileTree
    from vaultsync.client.notifications import Notifier
    from vaultsync.client.state import MetadataStore
    from vaultsync.client.sync.merge import MergeService

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCAL_MARKER = "<<<<<<< LOCAL (Your Version)"
SEPARATOR = "======="
SERVER_MARKER = ">>>>>>> SERVER (Remote Version)"

# Re-upload callback: (path, parent_revision) -> outcome
Reupload = Callable[[str, int], UploadOutcome]


def render_conflict_document(local_content: str, server_content: str, backup_path: str) -> str:
    """Build the marked file holding both versions."""
    return "\n".join([
        LOCAL_MARKER,
        local_content,
        SEPARATOR,
        server_content,
        SERVER_MARKER,
        "",
        "<!-- Conflict detected. Please resolve manually and re-sync. -->",
        f"<!-- A backup of the server version has been saved to: {backup_path} -->",
    ])


def has_conflict_markers(content: str) -> bool:
    """Check whether a file still contains an unresolved conflict block."""
    lines = content.splitlines()
    return (
        any(line.startswith("<<<<<<< ") for line in lines)
        and SEPARATOR in lines
        and any(line.startswith(">>>>>>> ") for line in lines)
    )


def conflict_timestamp(now: datetime | None = None) -> str:
    """Timestamp used in backup names, unique to the millisecond."""
    now = now or datetime.now()
    return now.strftime("%Y%m%d-%H%M%S") + f"-{now.microsecond // 1000:03d}"


def generate_backup_path(path: str, timestamp: str) -> str:
    """Backup next to the original: notes/a.md -> notes/a.conflict-<ts>.md"""
    p = PurePosixPath(path)
    return str(p.with_name(f"{p.stem}.conflict-{timestamp}{p.suffix}"))


def generate_fallback_backup_path(path: str, timestamp: str) -> str:
    """Flattened backup at the vault root: conflict-<ts>-a.md"""
    return f"conflict-{timestamp}-{PurePosixPath(path).name}"


class ConflictResolver:
    """Resolves revision conflicts by merging or by leaving a marked file."""

    def __init__(
        self,
        transport: HTTPClient,
        tree: FileTree,
        store: MetadataStore,
        merge_service: MergeService,
        notifier: Notifier,
        network_call: Callable[[Callable[[], Any], str], Any] | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            transport: Remote sync transport (downloads).
            tree: Local vault.
            store: Metadata store (conflict sidecar records).
            merge_service: Three-way merge implementation.
            notifier: User-visible notification sink.
            network_call: Wrapper applied to every network call, e.g. retry.
        """
        self._transport = transport
        self._tree = tree
        self._store = store
        self._merge = merge_service
        self._notifier = notifier
        self._network_call = network_call or (lambda func, _description: func())

    def _net(self, func: Callable[[], T], description: str) -> T:
        result: T = self._network_call(func, description)
        return result

    def resolve(
        self,
        path: str,
        context: ConflictContext,
        reupload: Reupload,
    ) -> ConflictResolution:
        """Resolve a rejected upload.

        Args:
            path: Vault path of the rejected file.
            context: Server revision and the parent revision we claimed.
            reupload: Uploads a path claiming the given parent revision.

        Returns:
            ConflictResolution with the terminal outcome.
        """
        try:
            return self._resolve(path, context, reupload)
        except Exception as e:
            logger.exception(f"Error handling conflict for {path}")
            return ConflictResolution(
                outcome=ConflictOutcome.ERROR,
                message=f"Error handling conflict for {path}: {e}",
            )

    def _resolve(
        self,
        path: str,
        context: ConflictContext,
        reupload: Reupload,
    ) -> ConflictResolution:
        logger.warning(
            f"Conflict on {path}: server is at r{context.current_revision}, "
            f"we claimed r{context.your_parent_revision}"
        )

        local_content = self._tree.read(path)

        try:
            server = self._net(
                lambda: self._transport.download_file(path, context.current_revision),
                f"download {path}@r{context.current_revision}",
            )
        except (APIError, *NETWORK_EXCEPTIONS) as e:
            # Without the server version there is nothing safe to write
            return ConflictResolution(
                outcome=ConflictOutcome.ERROR,
                message=f"Could not fetch server version of {path}: {e}",
            )
        server_content = server.content
        server_hash = server.file.content_hash or compute_content_hash(server_content)

        if compute_content_hash(local_content) == server_hash:
            logger.info(f"{path} already matches server r{context.current_revision}")
            return ConflictResolution(
                outcome=ConflictOutcome.IN_SYNC,
                message=f"{path} already matches the server",
            )

        self._notifier.conflict(path, "Conflict detected. Attempting auto-merge...")

        reason = self._attempt_merge(path, context, local_content, server_content, reupload)
        if isinstance(reason, ConflictResolution):
            return reason

        logger.info(f"Cannot auto-merge {path}: {reason}")
        return self._manual(
            path,
            context,
            local_content,
            server_content,
            server_hash,
        )

    def _attempt_merge(
        self,
        path: str,
        context: ConflictContext,
        local_content: str,
        server_content: str,
        reupload: Reupload,
    ) -> ConflictResolution | str:
        """Try the merge. Returns a resolution, or why manual handling is needed."""
        if context.your_parent_revision <= 0:
            return "no common ancestor"

        try:
            ancestor = self._net(
                lambda: self._transport.download_file(path, context.your_parent_revision),
                f"download {path}@r{context.your_parent_revision}",
            )
            result = self._net(
                lambda: self._merge.merge(
                    path,
                    ancestor=ancestor.content,
                    ours=local_content,
                    theirs=server_content,
                    ancestor_revision=context.your_parent_revision,
                    their_revision=context.current_revision,
                ),
                f"merge {path}",
            )
        except (APIError, *NETWORK_EXCEPTIONS) as e:
            return f"merge attempt failed ({e})"

        if not result.success:
            return "merge service reported failure"
        if result.has_conflict:
            return "overlapping changes"
        if not result.merged_content:
            return "merge produced no content"

        self._tree.modify(path, result.merged_content)
        outcome = reupload(path, context.current_revision)
        if outcome is not UploadOutcome.UPLOADED:
            # Merged content stays on disk and is retried by the next pass
            return ConflictResolution(
                outcome=ConflictOutcome.ERROR,
                message=f"Merged {path} but the upload did not go through ({outcome.name})",
            )

        logger.info(f"Auto-merged {path} on top of r{context.current_revision}")
        self._notifier.info(f'Auto-merged "{path}"')
        return ConflictResolution(
            outcome=ConflictOutcome.MERGED,
            message=f"Auto-merged {path}",
        )

    def _manual(
        self,
        path: str,
        context: ConflictContext,
        local_content: str,
        server_content: str,
        server_hash: str,
    ) -> ConflictResolution:
        self._notifier.conflict(path, "Cannot auto-merge. Manual resolution required.")

        timestamp = conflict_timestamp()
        backup_path = generate_backup_path(path, timestamp)
        try:
            self._tree.create(backup_path, server_content)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not create backup {backup_path}: {e}; using fallback name")
            backup_path = generate_fallback_backup_path(path, timestamp)
            try:
                self._tree.create(backup_path, server_content)
            except (OSError, ValueError) as e2:
                return ConflictResolution(
                    outcome=ConflictOutcome.ERROR,
                    message=f"Could not save server version of {path}: {e2}",
                )

        self._tree.modify(
            path, render_conflict_document(local_content, server_content, backup_path)
        )
        self._store.add_conflict(ConflictRecord(
            path=path,
            backup_path=backup_path,
            server_revision=context.current_revision,
            local_hash=compute_content_hash(local_content),
            server_hash=server_hash,
            created_at=time.time(),
        ))

        logger.warning(f"Conflict in {path} needs manual resolution; server version saved to {backup_path}")
        self._notifier.conflict(path, f"Conflict backup saved: {backup_path}")
        return ConflictResolution(
            outcome=ConflictOutcome.MANUAL,
            backup_path=backup_path,
            message=f"Manual resolution required for {path}",
        )
