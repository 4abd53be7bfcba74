"""Command-line interface for nassync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- sync: Synchronize profiles once, or continuously with --watch
- profiles: List configured profiles
- state: Inspect and prune two-way sync state
"""

from __future__ import annotations

from pathlib import Path

import click

from nassync.cli.config import context_config, load_app_config
from nassync.cli.profiles import profiles
from nassync.cli.state import state
from nassync.cli.sync import sync
from nassync.core.config import DEFAULT_CONFIG_FILE


@click.group()
@click.version_option(package_name="nassync")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Path to the configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, verbose: bool) -> None:
    """NASSync - Synchronize local directories with a NAS."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


# Sync commands
cli.add_command(sync)

# Inspection commands
cli.add_command(profiles)
cli.add_command(state)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "context_config",
    "load_app_config",
    "main",
]
