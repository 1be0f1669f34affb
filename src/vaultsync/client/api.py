"""HTTP client for the vault sync server API.

This module provides:
- HTTPClient: httpx-based client for the remote sync store
- RemoteFileDescriptor / DownloadedFile: file metadata and content
- ConflictContext: revision conflict reported on a rejected write
- Exception hierarchy mapped from HTTP status codes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from vaultsync.core.config import ServerConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


@dataclass(frozen=True)
class ConflictContext:
    """Why the server rejected a write.

    Attributes:
        current_revision: Server's authoritative revision at rejection time.
        your_parent_revision: Revision the rejected write claimed as its base.
    """

    current_revision: int
    your_parent_revision: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictContext:
        """Create from API response dictionary."""
        return cls(
            current_revision=int(data.get("currentRevision") or 0),
            your_parent_revision=int(data.get("yourParentRevision") or 0),
        )


class RevisionConflictError(APIError):
    """The claimed parent revision is stale."""

    def __init__(self, message: str, context: ConflictContext) -> None:
        super().__init__(message, 409)
        self.context = context


@dataclass
class RemoteFileDescriptor:
    """A file as currently stored on the server."""

    path: str
    revision: int
    content_hash: str
    size: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteFileDescriptor:
        """Create from API response dictionary."""
        return cls(
            path=data["path"],
            revision=int(data.get("revision") or 0),
            content_hash=data.get("hash") or "",
            size=int(data.get("size") or 0),
        )


@dataclass
class DownloadedFile:
    """Content of a file at one revision."""

    file: RemoteFileDescriptor
    parent_revision: int
    content: str
    is_conflict: bool = False


@dataclass
class MergeResult:
    """Verdict of a three-way merge."""

    success: bool
    has_conflict: bool
    merged_content: str | None = None


@dataclass
class DeleteResult:
    """Result of a delete request."""

    deleted: bool
    conflict: bool = False


@dataclass
class SyncStatus:
    """Account-level status reported by the server."""

    email: str
    file_count: int
    storage_used: int
    connected: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncStatus:
        """Create from API response dictionary."""
        return cls(
            email=data.get("user", {}).get("email", ""),
            file_count=int(data.get("files", {}).get("count", 0)),
            storage_used=int(data.get("storage", {}).get("used", 0)),
            connected=bool(data.get("connected", False)),
        )


class HTTPClient:
    """HTTP client for the sync server API."""

    def __init__(self, config: ServerConfig) -> None:
        """Initialize the client.

        Args:
            config: Server URL, token and timeout.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
        )

    @property
    def config(self) -> ServerConfig:
        """Get the connection configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    @staticmethod
    def _file_url(path: str) -> str:
        return f"/api/sync/files/{quote(path, safe='/')}"

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any]:
        """Decode an error body, or {} if it is not a JSON object."""
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _detail(self, response: httpx.Response, default: str) -> Any:
        body = self._json_body(response)
        return body.get("detail") or body.get("error") or default

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code == 409:
            body = self._json_body(response)
            conflict = body.get("conflict")
            raise RevisionConflictError(
                body.get("error") or "Conflict detected",
                ConflictContext.from_dict(conflict if isinstance(conflict, dict) else {}),
            )
        if response.status_code >= 400:
            raise APIError(
                self._detail(response, "Unknown error"), response.status_code
            )
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy."""
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === File operations ===

    def list_files(self) -> list[RemoteFileDescriptor]:
        """List every file currently stored on the server."""
        response = self._handle_response(self._client.get("/api/sync/files"))
        return [RemoteFileDescriptor.from_dict(f) for f in response.json()["files"]]

    def upload_file(
        self,
        path: str,
        content: str,
        parent_revision: int,
        device_id: str,
    ) -> RemoteFileDescriptor:
        """Store new content for a path.

        Args:
            path: Vault-relative file path.
            content: Full text content.
            parent_revision: Revision this content is based on (0 for new).
            device_id: Identifier of this device.

        Returns:
            The accepted file with its server-assigned revision.

        Raises:
            RevisionConflictError: If parent_revision is not the server's
                current revision.
        """
        response = self._handle_response(
            self._client.put(
                self._file_url(path),
                json={
                    "content": content,
                    "parentRevision": parent_revision,
                    "deviceId": device_id,
                },
            )
        )
        return RemoteFileDescriptor.from_dict(response.json()["file"])

    def download_file(self, path: str, revision: int | None = None) -> DownloadedFile:
        """Fetch the content of a path, at a given revision or the latest.

        Raises:
            NotFoundError: If the path (or revision) does not exist.
        """
        params = {}
        if revision:
            params["revision"] = str(revision)
        response = self._handle_response(
            self._client.get(self._file_url(path), params=params)
        )
        data = response.json()
        file_data = data["file"]
        descriptor = RemoteFileDescriptor.from_dict(file_data)
        return DownloadedFile(
            file=descriptor,
            parent_revision=int(
                file_data.get("parentRevision") or descriptor.revision
            ),
            content=data.get("content") or "",
            is_conflict=bool(data.get("isConflict", False)),
        )

    def delete_file(
        self,
        path: str,
        parent_revision: int,
        device_id: str,
    ) -> DeleteResult:
        """Delete a path on the server.

        A delete against a newer remote revision is still applied; the
        server reports it through the ``conflict`` flag.
        """
        response = self._handle_response(
            self._client.delete(
                self._file_url(path),
                params={
                    "parentRevision": str(parent_revision),
                    "deviceId": device_id,
                },
            )
        )
        data = response.json() if response.content else {}
        return DeleteResult(
            deleted=bool(data.get("success", True)),
            conflict=bool(data.get("conflict", False)),
        )

    # === Merge ===

    def attempt_auto_merge(
        self,
        file_path: str,
        our_content: str,
        ancestor_revision: int,
        their_revision: int,
    ) -> MergeResult:
        """Ask the server to three-way merge our content into its revision."""
        response = self._handle_response(
            self._client.post(
                "/api/sync/merge",
                json={
                    "filePath": file_path,
                    "ourContent": our_content,
                    "ancestorRevision": ancestor_revision,
                    "theirRevision": their_revision,
                },
            )
        )
        data = response.json()
        return MergeResult(
            success=bool(data.get("success", False)),
            has_conflict=bool(data.get("hasConflict", False)),
            merged_content=data.get("mergedContent"),
        )

    # === Account status ===

    def get_sync_status(self) -> SyncStatus:
        """Get account-level sync status."""
        response = self._handle_response(self._client.get("/api/sync/status"))
        return SyncStatus.from_dict(response.json())
