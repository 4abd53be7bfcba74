"""Sync engine: change detection, debouncing, transfers and scheduling.

Architecture:
    FileWatcher → DebounceEngine → ProfileScheduler → MountManager
                                                    → TransferInvoker / TwoWayReconciler

Components:
- **FileWatcher**: Normalizes filesystem notifications into FileChangeEvents
- **DebounceEngine**: Coalesces bursts of events into one trigger per profile
- **ProfileScheduler**: Per-profile state machine, single-flight cycles
- **TransferInvoker**: One rsync pass for mirror/one-way/incremental/backup
- **TwoWayReconciler**: Baseline-driven two-way pass with conflict resolution
- **ConflictResolver**: Pure winner decision plus on-disk application
- **SyncOrchestrator**: Runs all profiles once or in watch mode
"""

from nassync.sync.conflict import (
    ConflictResolver,
    conflict_filename,
    resolve_conflict,
)
from nassync.sync.debounce import DebounceEngine, DebounceWindow
from nassync.sync.ignore import ExclusionPatterns
from nassync.sync.orchestrator import SyncOrchestrator
from nassync.sync.reconcile import TwoWayReconciler, scan_tree
from nassync.sync.retry import retry_with_backoff
from nassync.sync.scheduler import ProfileScheduler
from nassync.sync.transfer import (
    TransferInvoker,
    TransferPlan,
    classify_transfer_failure,
    parse_rsync_stats,
)
from nassync.sync.types import (
    ConflictRecord,
    DebounceTrigger,
    FileChangeEvent,
    FileMeta,
    SyncFailure,
    SyncRunResult,
    TransferStats,
)
from nassync.sync.watcher import ChangeEventHandler, FileWatcher

__all__ = [
    # Conflict
    "ConflictResolver",
    "conflict_filename",
    "resolve_conflict",
    # Debounce
    "DebounceEngine",
    "DebounceWindow",
    # Ignore
    "ExclusionPatterns",
    # Orchestration
    "ProfileScheduler",
    "SyncOrchestrator",
    # Reconcile
    "TwoWayReconciler",
    "scan_tree",
    # Retry
    "retry_with_backoff",
    # Transfer
    "TransferInvoker",
    "TransferPlan",
    "classify_transfer_failure",
    "parse_rsync_stats",
    # Types
    "ConflictRecord",
    "DebounceTrigger",
    "FileChangeEvent",
    "FileMeta",
    "SyncFailure",
    "SyncRunResult",
    "TransferStats",
    # Watcher
    "ChangeEventHandler",
    "FileWatcher",
]
