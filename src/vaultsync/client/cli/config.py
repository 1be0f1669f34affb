"""Configuration utilities for VaultSync CLI.

This module provides shared configuration functions used across CLI commands.
Configuration is a JSON file in ~/.vaultsync; the metadata store lives next
to it.
"""

from __future__ import annotations

import json
import random
import string
import sys
import time
from pathlib import Path
from typing import Any

import click

from vaultsync.client.state import MetadataStore, MetadataStoreError
from vaultsync.core.config import DEFAULT_SYNCABLE_EXTENSIONS, ServerConfig, SyncSettings


def get_config_dir() -> Path:
    """Get the configuration directory for VaultSync.

    Returns:
        Path to ~/.vaultsync.
    """
    return Path.home() / ".vaultsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db_path() -> Path:
    """Get the path to the metadata store."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_vault_folder() -> Path | None:
    """Get the configured vault folder, or None if not configured."""
    config = load_config()
    if config.get("vault"):
        return Path(config["vault"]).expanduser().resolve()
    return None


def sanitize_device_name(name: str) -> str:
    """Sanitize a device name.

    Only allows alphanumeric characters, hyphens, and underscores.
    Other characters are replaced with underscores.

    Args:
        name: The device name to sanitize.

    Returns:
        Safe device name.
    """
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)


def generate_device_id() -> str:
    """Generate a device id such as ``device-1700000000000-k3j9x0q2m``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"device-{int(time.time() * 1000)}-{suffix}"


def ensure_device_id(config: dict[str, Any]) -> str:
    """Get the device id, generating and saving one on first use."""
    if not config.get("device_id"):
        config["device_id"] = generate_device_id()
        save_config(config)
    return str(config["device_id"])


def build_server_config(config: dict[str, Any]) -> ServerConfig:
    """Build the connection settings from the config file."""
    return ServerConfig(
        server_url=config.get("server_url", ""),
        token=config.get("token", ""),
        timeout=float(config.get("timeout", 30.0)),
    )


def build_settings(config: dict[str, Any]) -> SyncSettings:
    """Build the engine settings from the config file.

    Raises:
        ValueError: If the configured merge strategy is unknown.
    """
    return SyncSettings(
        device_id=ensure_device_id(config),
        device_name=config.get("device_name", ""),
        syncable_extensions=tuple(
            config.get("syncable_extensions") or DEFAULT_SYNCABLE_EXTENSIONS
        ),
        sync_interval=float(config.get("sync_interval", 5)),
        auto_sync=bool(config.get("auto_sync", True)),
        max_retries=int(config.get("max_retries", 2)),
        initial_backoff=float(config.get("initial_backoff", 0.5)),
        merge_strategy=config.get("merge_strategy", "server"),
    )


def open_metadata_store() -> MetadataStore:
    """Open the metadata store, exiting with an error if it is unavailable."""
    try:
        return MetadataStore(get_state_db_path())
    except MetadataStoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
