"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from vaultsync.core.config import DEFAULT_SYNCABLE_EXTENSIONS, ServerConfig, SyncSettings


class TestServerConfig:
    """Tests for ServerConfig class."""

    def test_defaults(self) -> None:
        """Should default to no token, 30s timeout and SSL verification."""
        config = ServerConfig(server_url="https://sync.example.com")
        assert config.token == ""
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = ServerConfig(server_url="https://sync.example.com/", token="t")
        assert config.server_url == "https://sync.example.com"

    def test_has_token(self) -> None:
        """Should treat empty or blank tokens as missing."""
        assert ServerConfig(server_url="http://x", token="abc").has_token is True
        assert ServerConfig(server_url="http://x", token="").has_token is False
        assert ServerConfig(server_url="http://x", token="   ").has_token is False

    def test_is_secure(self) -> None:
        """Should detect HTTPS URLs."""
        assert ServerConfig(server_url="https://x").is_secure is True
        assert ServerConfig(server_url="http://x").is_secure is False


class TestSyncSettings:
    """Tests for SyncSettings class."""

    def test_defaults(self) -> None:
        """Should use the default allow-list and server-side merges."""
        settings = SyncSettings(device_id="device-1")
        assert settings.syncable_extensions == DEFAULT_SYNCABLE_EXTENSIONS
        assert settings.sync_interval == 5.0
        assert settings.auto_sync is True
        assert settings.merge_strategy == "server"

    def test_is_syncable(self) -> None:
        """Should match extensions case-insensitively, with or without dot."""
        settings = SyncSettings(device_id="device-1")
        assert settings.is_syncable("md") is True
        assert settings.is_syncable(".MD") is True
        assert settings.is_syncable("yml") is True
        assert settings.is_syncable("png") is False
        assert settings.is_syncable("") is False

    def test_extensions_normalized(self) -> None:
        """Should lowercase extensions and strip dots."""
        settings = SyncSettings(device_id="d", syncable_extensions=(".Md", "TXT"))
        assert settings.syncable_extensions == ("md", "txt")

    def test_invalid_merge_strategy(self) -> None:
        """Should reject unknown merge strategies."""
        with pytest.raises(ValueError, match="merge strategy"):
            SyncSettings(device_id="d", merge_strategy="magic")
