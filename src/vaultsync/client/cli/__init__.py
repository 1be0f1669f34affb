"""Command-line interface for VaultSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Point this device at a server and a vault folder
- sync: Synchronize the vault with the server
- status: Show local and server sync status
- conflicts: List open conflicts
"""

from __future__ import annotations

import click

from vaultsync.client.cli.config import (
    build_server_config,
    build_settings,
    ensure_device_id,
    get_config_dir,
    get_config_file,
    get_state_db_path,
    get_vault_folder,
    load_config,
    open_metadata_store,
    sanitize_device_name,
    save_config,
)
from vaultsync.client.cli.configure import configure
from vaultsync.client.cli.status import conflicts, status
from vaultsync.client.cli.sync import sync


@click.group()
@click.version_option(package_name="vaultsync")
def cli() -> None:
    """VaultSync - Bidirectional vault synchronization."""


# Setup
cli.add_command(configure)

# Sync commands
cli.add_command(sync)
cli.add_command(status)
cli.add_command(conflicts)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "build_server_config",
    "build_settings",
    "ensure_device_id",
    "get_config_dir",
    "get_config_file",
    "get_state_db_path",
    "get_vault_folder",
    "load_config",
    "open_metadata_store",
    "sanitize_device_name",
    "save_config",
]
