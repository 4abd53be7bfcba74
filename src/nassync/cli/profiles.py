"""Profiles command for the nassync CLI."""

from __future__ import annotations

import click

from nassync.cli.config import context_config


@click.command()
@click.pass_context
def profiles(ctx: click.Context) -> None:
    """List configured sync profiles."""
    config = context_config(ctx)

    for profile in config.profiles:
        flags = []
        if profile.watch_mode:
            flags.append(f"watch {profile.debounce_seconds:g}s")
        if profile.use_smb_mount:
            flags.append("smb")
        if profile.is_two_way:
            flags.append(f"conflicts: {profile.conflict_resolution.value}")

        status = click.style("enabled", fg="green") if profile.enabled else "disabled"
        click.echo(f"{profile.name} [{profile.sync_type.value}] {status}")
        click.echo(f"  {profile.local_path} -> {profile.remote_path}")
        if flags:
            click.echo(f"  {', '.join(flags)}")

    for name, error in config.invalid_profiles.items():
        click.echo(click.style(f"{name} [invalid]", fg="red"))
        click.echo(f"  {error}")
