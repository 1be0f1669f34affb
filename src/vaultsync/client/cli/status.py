"""Status commands for VaultSync CLI.

Commands:
- status: Show configuration, local sync state and server account status
- conflicts: List files waiting for manual conflict resolution
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from vaultsync.client.cli.config import (
    build_server_config,
    load_config,
    open_metadata_store,
)


def format_size(size: int) -> str:
    """Human-readable byte size."""
    value = float(size)
    if value < 1024:
        return f"{size} B"
    for unit in ("KB", "MB"):
        value /= 1024
        if value < 1024:
            return f"{value:.1f} {unit}"
    value /= 1024
    return f"{value:.1f} GB"


@click.command()
def status() -> None:
    """Show sync status for this device and the server account."""
    from vaultsync.client.api import APIError, HTTPClient
    from vaultsync.client.sync import NETWORK_EXCEPTIONS

    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: Not configured. Run 'vaultsync configure' first.", err=True)
        sys.exit(1)

    click.echo(f"Server: {config['server_url']}")
    click.echo(f"Vault:  {config.get('vault', '(not set)')}")
    click.echo(f"Device: {config.get('device_name', '')} ({config.get('device_id', 'no id yet')})")

    with open_metadata_store() as store:
        tracked = len(store.list_records())
        open_conflicts = len(store.list_conflicts())
    click.echo(f"Tracked files: {tracked}")
    if open_conflicts:
        click.echo(click.style(f"Open conflicts: {open_conflicts}", fg="yellow"))

    if not config.get("token"):
        click.echo(click.style("Not authenticated: no API token configured.", fg="red"))
        sys.exit(1)

    with HTTPClient(build_server_config(config)) as client:
        try:
            sync_status = client.get_sync_status()
        except (APIError, *NETWORK_EXCEPTIONS) as e:
            click.echo(click.style(f"Server unreachable: {e}", fg="red"))
            sys.exit(1)

    click.echo("")
    click.echo(f"Account: {sync_status.email}")
    click.echo(f"Files on server: {sync_status.file_count}")
    click.echo(f"Storage used: {format_size(sync_status.storage_used)}")
    connected = click.style("yes", fg="green") if sync_status.connected else click.style("no", fg="red")
    click.echo(f"Connected: {connected}")


@click.command()
def conflicts() -> None:
    """List files waiting for manual conflict resolution.

    Edit each file, remove the conflict markers, and run 'vaultsync sync'.
    """
    with open_metadata_store() as store:
        records = store.list_conflicts()

    if not records:
        click.echo("No open conflicts.")
        return

    click.echo(click.style(f"{len(records)} open conflict(s):", fg="yellow"))
    for record in records:
        created = datetime.fromtimestamp(record.created_at).strftime("%Y-%m-%d %H:%M")
        click.echo(f"  ! {record.path}")
        click.echo(f"      server r{record.server_revision}, backup: {record.backup_path} ({created})")
