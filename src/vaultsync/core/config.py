"""Shared configuration classes for vaultsync.

This module defines the connection settings used by the HTTP transport and
the per-device sync settings used by the reconciliation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_SYNCABLE_EXTENSIONS: tuple[str, ...] = (
    "md",
    "txt",
    "json",
    "css",
    "js",
    "html",
    "xml",
    "yaml",
    "yml",
)

MERGE_STRATEGIES = ("server", "local")


@dataclass
class ServerConfig:
    """Configuration for connecting to a sync server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://sync.example.com").
        token: API token. An empty token means "not authenticated".
        timeout: Per-request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def has_token(self) -> bool:
        """Check whether a credential is configured."""
        return bool(self.token and self.token.strip())

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """Per-device settings for the reconciliation engine.

    Attributes:
        device_id: Stable identifier of this device, sent with every write.
        device_name: Human-readable device name.
        syncable_extensions: Extensions (without dot, case-insensitive)
            eligible for upload.
        sync_interval: Minutes between automatic passes in watch mode.
        auto_sync: Whether watch mode runs periodic passes.
        max_retries: Retries for a network call before the file step fails.
        initial_backoff: First retry delay in seconds (doubles each retry).
        merge_strategy: "server" delegates merges to the server,
            "local" merges on this device.
    """

    device_id: str
    device_name: str = ""
    syncable_extensions: tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_SYNCABLE_EXTENSIONS
    )
    sync_interval: float = 5.0
    auto_sync: bool = True
    max_retries: int = 2
    initial_backoff: float = 0.5
    merge_strategy: str = "server"

    def __post_init__(self) -> None:
        """Normalize extensions and validate the merge strategy."""
        self.syncable_extensions = tuple(
            ext.lower().lstrip(".") for ext in self.syncable_extensions
        )
        if self.merge_strategy not in MERGE_STRATEGIES:
            raise ValueError(
                f"Invalid merge strategy: {self.merge_strategy!r} "
                f"(expected one of {', '.join(MERGE_STRATEGIES)})"
            )

    def is_syncable(self, extension: str) -> bool:
        """Check whether files with this extension may be uploaded."""
        return extension.lower().lstrip(".") in self.syncable_extensions
