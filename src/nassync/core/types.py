"""Shared enums for nassync.

This module defines the value types used by the configuration layer,
the sync engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncMode(str, Enum):
    """How a profile propagates changes from source to destination."""

    MIRROR = "mirror"
    ONE_WAY = "one-way"
    TWO_WAY = "two-way"
    INCREMENTAL = "incremental"
    BACKUP = "backup"


class ConflictStrategy(str, Enum):
    """Strategy used to settle a two-way conflict."""

    SKIP = "skip"
    OVERWRITE = "overwrite"
    KEEP = "keep"
    NEWEST = "newest"
    LARGEST = "largest"


class ConflictOutcome(str, Enum):
    """Result of resolving a single conflict."""

    SOURCE_WINS = "source-wins"
    DEST_WINS = "dest-wins"
    BOTH_KEPT = "both-kept"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Terminal status of a sync run."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success-with-warnings"
    FAILED = "failed"


class ProfileState(str, Enum):
    """Lifecycle state of a profile scheduler."""

    IDLE = "idle"
    PREPARING = "preparing"
    MOUNTING = "mounting"
    SYNCING = "syncing"
    RECONCILING = "reconciling"
    FINALIZING = "finalizing"
    UNMOUNTING = "unmounting"
    ERROR = "error"
    SHUTTING_DOWN = "shutting-down"


class MountState(str, Enum):
    """State of a mount session."""

    UNMOUNTED = "unmounted"
    MOUNTING = "mounting"
    MOUNTED = "mounted"
    UNMOUNTING = "unmounting"
    FAILED = "failed"


class ChangeKind(str, Enum):
    """Kind of filesystem change."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
