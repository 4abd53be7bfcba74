"""State commands for the nassync CLI.

Commands:
- state show: List the stored two-way baselines of a profile
- state prune: Delete baselines older than a number of days
"""

from __future__ import annotations

import time
from datetime import datetime

import click

from nassync.cli.config import context_config
from nassync.core.errors import StateStoreError
from nassync.state import SyncStateStore

SECONDS_PER_DAY = 86400


@click.group()
def state() -> None:
    """Inspect the two-way sync state."""


@state.command()
@click.option("--profile", "-p", "profile_name", required=True, help="Profile name.")
@click.pass_context
def show(ctx: click.Context, profile_name: str) -> None:
    """List stored sync state entries of a profile."""
    config = context_config(ctx)
    try:
        store = SyncStateStore(config.engine.state_db)
        try:
            entries = store.list_entries(profile_name)
        finally:
            store.close()
    except StateStoreError as e:
        raise click.ClickException(str(e)) from e

    if not entries:
        click.echo(f"No sync state recorded for {profile_name}.")
        return

    for entry in entries:
        synced = datetime.fromtimestamp(entry.synced_at).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{synced}  {entry.fingerprint[:12]}  {entry.path}")
    click.echo(f"\n{len(entries)} entries")


@state.command()
@click.option("--profile", "-p", "profile_name", required=True, help="Profile name.")
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    required=True,
    help="Delete entries recorded more than this many days ago.",
)
@click.pass_context
def prune(ctx: click.Context, profile_name: str, older_than_days: int) -> None:
    """Delete stale sync state entries of a profile."""
    config = context_config(ctx)
    cutoff = time.time() - older_than_days * SECONDS_PER_DAY
    try:
        store = SyncStateStore(config.engine.state_db)
        try:
            removed = store.prune(profile_name, cutoff)
        finally:
            store.close()
    except StateStoreError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Removed {removed} entries for {profile_name}.")
