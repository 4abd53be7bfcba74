"""Conflict resolution for two-way sync.

This module provides:
- resolve_conflict: Pure decision of the winning side from metadata
- conflict_filename: Name of the renamed destination for the keep strategy
- copy_file_atomic: Copy preserving mtime, replacing the target atomically
- ConflictResolver: Decides and applies resolutions

Strategies:
    | Strategy  | Outcome                                              |
    |-----------|------------------------------------------------------|
    | skip      | skipped, nothing written                             |
    | overwrite | source-wins, destination replaced                    |
    | keep      | both-kept, destination renamed, source copied in     |
    | newest    | greater mtime wins, tie -> dest-wins without a write |
    | largest   | greater size wins, tie -> dest-wins without a write  |
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from nassync.core.types import ConflictOutcome, ConflictStrategy
from nassync.sync.types import ConflictRecord, FileMeta

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = ConflictStrategy.SKIP


def _compare(source_value: float, dest_value: float) -> tuple[ConflictOutcome, bool]:
    if source_value > dest_value:
        return ConflictOutcome.SOURCE_WINS, False
    if dest_value > source_value:
        return ConflictOutcome.DEST_WINS, False
    return ConflictOutcome.DEST_WINS, True


def resolve_conflict(
    path: str,
    source: FileMeta,
    dest: FileMeta,
    strategy: ConflictStrategy | None = None,
) -> ConflictRecord:
    """Decide which side of a conflict wins.

    Pure function of its arguments: no filesystem access, no clock.

    Args:
        path: Path relative to the profile roots.
        source: Source-side metadata.
        dest: Destination-side metadata.
        strategy: Resolution strategy (defaults to skip).

    Returns:
        The resulting ConflictRecord.
    """
    strategy = strategy or DEFAULT_STRATEGY
    tie = False

    if strategy is ConflictStrategy.SKIP:
        outcome = ConflictOutcome.SKIPPED
    elif strategy is ConflictStrategy.OVERWRITE:
        outcome = ConflictOutcome.SOURCE_WINS
    elif strategy is ConflictStrategy.KEEP:
        outcome = ConflictOutcome.BOTH_KEPT
    elif strategy is ConflictStrategy.NEWEST:
        outcome, tie = _compare(source.mtime, dest.mtime)
    elif strategy is ConflictStrategy.LARGEST:
        outcome, tie = _compare(source.size, dest.size)
    else:
        raise ValueError(f"Unknown conflict strategy: {strategy}")

    return ConflictRecord(
        path=path,
        source=source,
        dest=dest,
        strategy=strategy,
        outcome=outcome,
        tie=tie,
    )


def conflict_filename(name: str, resolved_at: datetime) -> str:
    """Build ``<name>.conflict.<YYYYMMDD-HHMMSS>`` for a renamed destination."""
    return f"{name}.conflict.{resolved_at:%Y%m%d-%H%M%S}"


def _free_name(path: Path) -> Path:
    """Return path, or path with the first free ``.N`` suffix if it exists."""
    candidate = path
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.{counter}")
        counter += 1
    return candidate


def copy_file_atomic(src: Path, dst: Path) -> int:
    """Copy src over dst, preserving metadata.

    The data is written to a temporary sibling first and moved into place,
    so dst is never left half-written.

    Returns:
        Number of bytes copied.
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(f".{dst.name}.nassync.tmp")
    try:
        shutil.copy2(src, tmp)
        os.replace(tmp, dst)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return dst.stat().st_size


@dataclass(frozen=True)
class AppliedResolution:
    """What applying a ConflictRecord changed on disk.

    Attributes:
        files_written: Number of files written.
        bytes_written: Number of bytes written.
        winner: Metadata to record as the new baseline, None when the
            sides still differ afterwards (skip or tie).
        renamed_to: Destination conflict copy for the keep strategy.
    """

    files_written: int
    bytes_written: int
    winner: FileMeta | None
    renamed_to: Path | None = None


class ConflictResolver:
    """Resolves and applies two-way conflicts."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize the resolver.

        Args:
            clock: Returns the resolution time used to name conflict copies.
        """
        self._clock = clock or (lambda: datetime.now(UTC))

    def resolve(
        self,
        path: str,
        source: FileMeta,
        dest: FileMeta,
        strategy: ConflictStrategy | None = None,
    ) -> ConflictRecord:
        record = resolve_conflict(path, source, dest, strategy)
        if record.outcome is ConflictOutcome.SKIPPED:
            logger.warning("Conflict detected on %s, skipping per conflict_resolution policy", path)
        else:
            logger.info(
                "Conflict detected on %s, resolved as %s (%s)",
                path,
                record.outcome.value,
                record.strategy.value,
            )
        return record

    def apply(
        self,
        record: ConflictRecord,
        source_root: Path,
        dest_root: Path,
        dry_run: bool = False,
    ) -> AppliedResolution:
        """Carry out a resolution on disk.

        Args:
            record: Resolution to apply.
            source_root: Profile source root.
            dest_root: Profile destination root.
            dry_run: Log what would happen without touching files.

        Returns:
            AppliedResolution describing the writes.
        """
        source_file = source_root / record.path
        dest_file = dest_root / record.path

        if not record.requires_write:
            if record.tie:
                logger.info("%s: %s tie, keeping destination unchanged", record.path,
                            record.strategy.value)
            return AppliedResolution(files_written=0, bytes_written=0, winner=None)

        if record.outcome is ConflictOutcome.DEST_WINS:
            logger.info("%s: destination is newer/larger, copying it back to source", record.path)
            written = 0 if dry_run else copy_file_atomic(dest_file, source_file)
            return AppliedResolution(files_written=1, bytes_written=written, winner=record.dest)

        renamed_to: Path | None = None
        if record.outcome is ConflictOutcome.BOTH_KEPT:
            renamed_to = _free_name(
                dest_file.with_name(conflict_filename(dest_file.name, self._clock()))
            )
            logger.info("Keeping both versions, renaming destination to %s", renamed_to.name)
            if not dry_run:
                os.replace(dest_file, renamed_to)
        else:
            logger.info("Overwriting destination with source for %s (source wins)", record.path)

        written = 0 if dry_run else copy_file_atomic(source_file, dest_file)
        return AppliedResolution(
            files_written=1,
            bytes_written=written,
            winner=record.source,
            renamed_to=renamed_to,
        )
