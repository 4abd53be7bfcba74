"""Shared dataclasses for sync operations.

This module provides:
- FileChangeEvent: Normalized filesystem change notification
- DebounceTrigger: Coalesced trigger emitted by the debounce engine
- FileMeta: Metadata of one side of a file pair
- ConflictRecord: Outcome of resolving a two-way conflict
- TransferStats: Counters reported by one transfer pass
- SyncFailure: Terminal failure of a sync cycle
- SyncRunResult: Summary of one sync cycle
- Type aliases for callbacks
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from nassync.core.types import (
    ChangeKind,
    ConflictOutcome,
    ConflictStrategy,
    RunStatus,
)


@dataclass(frozen=True)
class FileChangeEvent:
    """A filesystem change observed under a profile root.

    Attributes:
        path: Absolute path of the changed entry.
        kind: Kind of change.
        observed_at: Monotonic timestamp when the change was observed.
        dest_path: New path for renames.
        is_directory: Whether the entry is a directory.
    """

    path: Path
    kind: ChangeKind
    observed_at: float = field(default_factory=time.monotonic)
    dest_path: Path | None = None
    is_directory: bool = False


@dataclass(frozen=True)
class DebounceTrigger:
    """One coalesced trigger for a profile.

    ``fired_at`` is the window deadline, i.e. the time of the last event
    plus the debounce duration.
    """

    profile: str
    opened_at: float
    fired_at: float
    event_count: int


@dataclass(frozen=True)
class FileMeta:
    """Metadata of a file as seen on one side of a sync pair."""

    mtime: float
    size: int
    fingerprint: str


@dataclass(frozen=True)
class ConflictRecord:
    """Outcome of resolving a conflict on one path.

    Attributes:
        path: Path relative to the profile roots.
        source: Source-side metadata.
        dest: Destination-side metadata.
        strategy: Strategy that produced the outcome.
        outcome: Which side won.
        tie: True when a newest/largest comparison was exactly equal, in
            which case the destination wins without any write.
    """

    path: str
    source: FileMeta
    dest: FileMeta
    strategy: ConflictStrategy
    outcome: ConflictOutcome
    tie: bool = False

    @property
    def requires_write(self) -> bool:
        """Whether applying this record modifies any file."""
        if self.outcome is ConflictOutcome.SKIPPED:
            return False
        if self.outcome is ConflictOutcome.DEST_WINS:
            return not self.tie
        return True


@dataclass
class TransferStats:
    """Counters for one transfer pass."""

    files_transferred: int = 0
    bytes_transferred: int = 0
    conflicts: list[ConflictRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncFailure:
    """A terminal failure of a sync cycle."""

    profile: str
    phase: str
    cause: str
    kind: str | None = None

    def __str__(self) -> str:
        kind = f" [{self.kind}]" if self.kind else ""
        return f"{self.profile}: {self.phase} failed{kind}: {self.cause}"


@dataclass
class SyncRunResult:
    """Summary of one sync cycle of a profile."""

    profile: str
    started_at: datetime
    finished_at: datetime | None = None
    files_transferred: int = 0
    bytes_transferred: int = 0
    conflicts: list[ConflictRecord] = field(default_factory=list)
    status: RunStatus = RunStatus.SUCCESS
    warnings: list[str] = field(default_factory=list)
    failure: SyncFailure | None = None
    dry_run: bool = False

    @classmethod
    def begin(cls, profile: str, dry_run: bool = False) -> SyncRunResult:
        return cls(profile=profile, started_at=datetime.now(UTC), dry_run=dry_run)

    @property
    def duration(self) -> float:
        """Run duration in seconds (0 while still running)."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def conflict_counts(self) -> dict[ConflictOutcome, int]:
        counts = Counter(record.outcome for record in self.conflicts)
        return {outcome: counts.get(outcome, 0) for outcome in ConflictOutcome}

    @property
    def failed(self) -> bool:
        return self.status is RunStatus.FAILED

    def add_stats(self, stats: TransferStats) -> None:
        self.files_transferred += stats.files_transferred
        self.bytes_transferred += stats.bytes_transferred
        self.conflicts.extend(stats.conflicts)
        self.warnings.extend(stats.warnings)

    def fail(self, phase: str, cause: str, kind: str | None = None) -> None:
        self.status = RunStatus.FAILED
        self.failure = SyncFailure(profile=self.profile, phase=phase, cause=cause, kind=kind)

    def finish(self) -> SyncRunResult:
        """Stamp the end time and settle the terminal status."""
        self.finished_at = datetime.now(UTC)
        if self.status is not RunStatus.FAILED:
            skipped = any(r.outcome is ConflictOutcome.SKIPPED for r in self.conflicts)
            if self.warnings or skipped:
                self.status = RunStatus.SUCCESS_WITH_WARNINGS
        return self


# Type aliases for callbacks
ChangeCallback = Callable[[FileChangeEvent], None]
TriggerCallback = Callable[[DebounceTrigger], None]
ResultCallback = Callable[[SyncRunResult], None]
