"""Three-way merge services used by the conflict resolver.

The resolver only decides when to merge and what to do with the verdict.
The merge itself is delegated to one of:

* ``ServerMergeService`` -- asks the sync server to merge our content into
  its revision (the server already holds the ancestor and theirs).
* ``LocalMergeService`` -- merges on this device with ``merge3`` on lines,
  using the ancestor and server contents the resolver already fetched.
"""

from __future__ import annotations

import logging
from typing import Protocol

from merge3 import Merge3

from vaultsync.client.api import MergeResult

logger = logging.getLogger(__name__)

START_MARKER = "<<<<<<<"
MID_MARKER = "======="
END_MARKER = ">>>>>>>"


class MergeService(Protocol):
    """Something that can three-way merge a file."""

    def merge(
        self,
        path: str,
        ancestor: str,
        ours: str,
        theirs: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult:
        """Merge ``ours`` and ``theirs`` against ``ancestor``."""
        ...


class AutoMergeTransport(Protocol):
    def attempt_auto_merge(
        self,
        file_path: str,
        our_content: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult: ...


class ServerMergeService:
    """Delegates merges to the sync server."""

    def __init__(self, transport: AutoMergeTransport) -> None:
        self._transport = transport

    def merge(
        self,
        path: str,
        ancestor: str,
        ours: str,
        theirs: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult:
        return self._transport.attempt_auto_merge(
            file_path=path,
            our_content=ours,
            ancestor_revision=ancestor_revision,
            their_revision=their_revision,
        )


class LocalMergeService:
    """Line-based three-way merge on this device."""

    def merge(
        self,
        path: str,
        ancestor: str,
        ours: str,
        theirs: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult:
        m3 = Merge3(
            ancestor.splitlines(True),
            ours.splitlines(True),
            theirs.splitlines(True),
        )
        merged = "".join(
            m3.merge_lines(
                name_a="LOCAL",
                name_b="SERVER",
                start_marker=START_MARKER,
                mid_marker=MID_MARKER,
                end_marker=END_MARKER,
            )
        )
        has_conflict = any(
            line.startswith(START_MARKER) for line in merged.splitlines()
        )
        logger.debug(
            f"Local merge of {path} (r{ancestor_revision} -> r{their_revision}): "
            f"{'conflict' if has_conflict else 'clean'}"
        )
        return MergeResult(success=True, has_conflict=has_conflict, merged_content=merged)
