"""Sync command for VaultSync CLI.

Commands:
- sync: Reconcile the vault with the server, once or continuously
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

import click

from vaultsync.client.cli.config import (
    build_server_config,
    build_settings,
    get_vault_folder,
    load_config,
    open_metadata_store,
)

if TYPE_CHECKING:
    from vaultsync.client.filetree import LocalFileTree
    from vaultsync.client.sync import ReconciliationEngine, SyncSummary
    from vaultsync.core.config import SyncSettings


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes through click.

    Warnings and errors go to stderr in color, everything else to stdout.
    """

    COLORS = {
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "red",
    }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            color = self.COLORS.get(record.levelno)
            click.echo(
                click.style(msg, fg=color) if color else msg,
                err=record.levelno >= logging.WARNING,
            )
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool) -> None:
    """Route the vaultsync logger to the terminal."""
    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))

    vaultsync_logger = logging.getLogger("vaultsync")
    for existing in vaultsync_logger.handlers[:]:
        vaultsync_logger.removeHandler(existing)
    vaultsync_logger.addHandler(handler)
    vaultsync_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    vaultsync_logger.propagate = False


def display_summary(summary: SyncSummary) -> None:
    """Display the result of a pass."""
    if summary.conflicts:
        click.echo(click.style("\nConflicts:", fg="yellow"))
        for path in summary.conflicts:
            click.echo(f"  ! {path}")

    if summary.errors:
        click.echo(click.style("\nErrors:", fg="red"))
        for error in summary.errors:
            click.echo(f"  ✗ {error}")

    if summary.completed:
        click.echo(f"\nSync complete: {summary.describe()}")
    else:
        click.echo(click.style(f"\n{summary.describe()}", fg="red"), err=True)


def watch_loop(
    engine: ReconciliationEngine,
    tree: LocalFileTree,
    settings: SyncSettings,
    silent: bool,
) -> None:
    """Keep the watcher running and re-sync periodically until Ctrl+C."""
    from vaultsync.client.sync import VaultWatcher

    cancel = threading.Event()
    interval_s = settings.sync_interval * 60
    watcher = VaultWatcher(tree.root, engine, settings, ignore_patterns=tree.ignore)
    watcher.start()

    if settings.auto_sync:
        click.echo(f"\nWatching for changes, syncing every {settings.sync_interval:g} min... (Ctrl+C to stop)\n")
    else:
        click.echo("\nWatching for changes... (Ctrl+C to stop)\n")

    next_pass = time.monotonic() + interval_s
    try:
        while True:
            time.sleep(1.0)
            if settings.auto_sync and time.monotonic() >= next_pass:
                summary = engine.reconcile(silent=silent, cancel=cancel)
                if summary.changed or summary.failed:
                    click.echo(f"  ✓ {summary.describe()}")
                next_pass = time.monotonic() + interval_s
    except KeyboardInterrupt:
        click.echo("\nStopping...")
        cancel.set()
    finally:
        watcher.stop()


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Watch for changes and sync continuously.")
@click.option("--silent", is_flag=True, help="Suppress start and completion notices.")
@click.option("--notify", is_flag=True, help="Also show desktop notifications.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output.")
def sync(watch: bool, silent: bool, notify: bool, verbose: bool) -> None:
    """Synchronize the vault with the server.

    Downloads remote changes, then uploads local changes.
    Use --watch to continuously monitor for changes.
    """
    from vaultsync.client.api import HTTPClient
    from vaultsync.client.filetree import LocalFileTree
    from vaultsync.client.notifications import Notifier
    from vaultsync.client.sync import ReconciliationEngine

    config = load_config()
    if not config.get("server_url") or not config.get("token") or not config.get("vault"):
        click.echo("Error: Not configured. Run 'vaultsync configure' first.", err=True)
        sys.exit(1)

    try:
        settings = build_settings(config)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    setup_logging(verbose)

    server_config = build_server_config(config)
    tree = LocalFileTree(get_vault_folder() or Path(config["vault"]))
    client = HTTPClient(server_config)
    store = open_metadata_store()

    engine = ReconciliationEngine(
        client,
        store,
        tree,
        settings,
        server_config,
        notifier=Notifier(desktop=notify),
    )

    click.echo(f"Syncing with {server_config.server_url}...")
    click.echo(f"Vault: {tree.root}\n")

    try:
        summary = engine.reconcile(silent=silent)
        display_summary(summary)
        if watch and summary.completed:
            watch_loop(engine, tree, settings, silent)
    finally:
        store.close()
        client.close()

    if not summary.completed:
        sys.exit(1)
