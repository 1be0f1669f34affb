"""Configure command for VaultSync CLI.

Commands:
- configure: Point this device at a sync server and a vault folder
"""

from __future__ import annotations

import socket
from pathlib import Path

import click

from vaultsync.client.cli.config import (
    ensure_device_id,
    get_config_file,
    load_config,
    sanitize_device_name,
    save_config,
)
from vaultsync.core.config import MERGE_STRATEGIES


@click.command()
@click.option(
    "--server-url",
    required=True,
    help="Server URL (e.g., https://sync.example.com).",
)
@click.option(
    "--token",
    required=True,
    help="API token issued by the server.",
)
@click.option(
    "--vault",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Vault folder to synchronize.",
)
@click.option(
    "--device-name",
    default=None,
    help="Device name (default: hostname).",
)
@click.option(
    "--interval",
    type=click.FloatRange(min=0.1),
    default=None,
    help="Minutes between automatic syncs in watch mode (default: 5).",
)
@click.option(
    "--auto-sync/--no-auto-sync",
    default=None,
    help="Run periodic syncs in watch mode (default: on).",
)
@click.option(
    "--merge",
    "merge_strategy",
    type=click.Choice(MERGE_STRATEGIES),
    default=None,
    help="Where three-way merges run (default: server).",
)
def configure(
    server_url: str,
    token: str,
    vault: Path,
    device_name: str | None,
    interval: float | None,
    auto_sync: bool | None,
    merge_strategy: str | None,
) -> None:
    """Configure this device for synchronization.

    Settings not given keep their previous value. The device id is
    generated once and kept across reconfiguration.
    """
    config = load_config()

    name = sanitize_device_name(device_name or socket.gethostname())
    if device_name and name != device_name:
        click.echo(f"Note: Device name sanitized to '{name}'")

    vault_path = vault.expanduser().resolve()
    vault_path.mkdir(parents=True, exist_ok=True)

    config.update({
        "server_url": server_url.rstrip("/"),
        "token": token,
        "vault": str(vault_path),
        "device_name": name,
    })
    if interval is not None:
        config["sync_interval"] = interval
    if auto_sync is not None:
        config["auto_sync"] = auto_sync
    if merge_strategy is not None:
        config["merge_strategy"] = merge_strategy

    save_config(config)
    device_id = ensure_device_id(config)

    click.echo(click.style("Configuration saved.", fg="green"))
    click.echo(f"  Server: {config['server_url']}")
    click.echo(f"  Vault:  {vault_path}")
    click.echo(f"  Device: {name} ({device_id})")
    click.echo(f"  Config: {get_config_file()}")
