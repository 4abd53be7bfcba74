"""Sync command for the nassync CLI.

Commands:
- sync: Synchronize profiles once, or continuously with --watch
"""

from __future__ import annotations

import sys

import click

from nassync.cli.config import context_config
from nassync.core.errors import ConfigurationError
from nassync.core.types import ConflictOutcome, RunStatus
from nassync.sync.orchestrator import SyncOrchestrator
from nassync.sync.types import SyncRunResult

STATUS_LABELS = {
    RunStatus.SUCCESS: ("Completed successfully", "green"),
    RunStatus.SUCCESS_WITH_WARNINGS: ("Completed with warnings", "yellow"),
    RunStatus.FAILED: ("Failed", "red"),
}


def _format_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.2f} MB"


def display_summary(result: SyncRunResult) -> None:
    """Print the run summary of one profile."""
    click.echo("\nSync Summary:")
    click.echo(f"Profile: {result.profile}")
    click.echo(f"Files transferred: {result.files_transferred}")
    click.echo(f"Bytes transferred: {_format_mb(result.bytes_transferred)}")

    if result.conflicts:
        counts = result.conflict_counts
        click.echo(f"Conflicts detected: {len(result.conflicts)}")
        for outcome in ConflictOutcome:
            if counts[outcome]:
                click.echo(f"  - {outcome.value}: {counts[outcome]}")

    for warning in result.warnings:
        click.echo(click.style(f"  ! {warning}", fg="yellow"))

    click.echo(f"Duration: {result.duration:.2f}s")
    label, color = STATUS_LABELS[result.status]
    click.echo(f"Status: {click.style(label, fg=color)}")
    if result.failure is not None:
        click.echo(click.style(f"  ✗ {result.failure}", fg="red"))


def display_cycle(result: SyncRunResult) -> None:
    """Print a one-line summary of a watch mode cycle."""
    label, color = STATUS_LABELS[result.status]
    parts = [f"{result.files_transferred} files", _format_mb(result.bytes_transferred)]
    if result.conflicts:
        parts.append(f"{len(result.conflicts)} conflicts")
    line = f"[{result.profile}] {', '.join(parts)} - {click.style(label, fg=color)}"
    if result.failure is not None:
        line += f" ({result.failure.cause})"
    click.echo(line)


@click.command()
@click.option(
    "--profile",
    "-p",
    "profile_names",
    multiple=True,
    help="Run only the given profile (repeatable).",
)
@click.option("--dry-run", "-d", is_flag=True, help="Show what would be synchronized.")
@click.option("--watch", "-w", is_flag=True, help="Watch for changes and sync continuously.")
@click.pass_context
def sync(
    ctx: click.Context,
    profile_names: tuple[str, ...],
    dry_run: bool,
    watch: bool,
) -> None:
    """Synchronize profiles with the NAS.

    Runs every enabled profile once. Use --watch to keep watching the
    profiles that have watch_mode enabled.
    """
    config = context_config(ctx)
    names = list(profile_names) or None

    if dry_run:
        click.echo(click.style("DRY RUN MODE - no files will be modified", fg="yellow"))

    orchestrator = SyncOrchestrator(
        config,
        dry_run=dry_run,
        on_result=display_cycle if watch else None,
    )
    try:
        if watch:
            click.echo("Watching for changes... (Ctrl+C to stop)\n")
            results = orchestrator.watch(names)
            click.echo("\nStopped.")
        else:
            results = orchestrator.run_once(names)
            for result in results:
                display_summary(result)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    finally:
        orchestrator.close()

    if any(result.failed for result in results):
        sys.exit(1)
