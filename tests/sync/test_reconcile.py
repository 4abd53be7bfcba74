"""Tests for two-way reconciliation."""

from __future__ import annotations

import os
import time
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from nassync.core.fingerprint import compute_fingerprint
from nassync.core.types import ConflictOutcome, ConflictStrategy
from nassync.state import SyncStateStore
from nassync.sync.conflict import ConflictResolver
from nassync.sync.ignore import ExclusionPatterns
from nassync.sync.reconcile import TwoWayReconciler, scan_tree

T0 = 1_700_000_000.0
T1 = T0 + 200
T2 = T0 + 100


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SyncStateStore]:
    s = SyncStateStore(tmp_path / "state.db")
    yield s
    s.close()


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def dest(tmp_path: Path) -> Path:
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def reconciler(store: SyncStateStore) -> TwoWayReconciler:
    resolver = ConflictResolver(clock=lambda: datetime(2026, 1, 8, 10, 15, 30, tzinfo=UTC))
    return TwoWayReconciler(store, resolver=resolver)


def _write(path: Path, content: str, mtime: float) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    os.utime(path, (mtime, mtime))
    return path


def _synced(store: SyncStateStore, source: Path, dest: Path, name: str, content: str) -> None:
    """Create an identical file on both sides with a recorded baseline."""
    _write(source / name, content, T0)
    _write(dest / name, content, T0)
    store.upsert("Docs", name, T0, compute_fingerprint(source / name))


class TestScanTree:
    """Tests for scan_tree."""

    def test_lists_regular_files(self, source: Path) -> None:
        """Should list files by relative path, skipping exclusions."""
        _write(source / "a.txt", "a", T0)
        _write(source / "sub" / "b.txt", "b", T0)
        _write(source / ".git" / "HEAD", "ref", T0)
        _write(source / "c.txt.nassync.tmp", "partial", T0)

        files = scan_tree(source, ExclusionPatterns([".git"]))

        assert sorted(files) == ["a.txt", "sub/b.txt"]


class TestTwoWayReconciler:
    """Tests for TwoWayReconciler."""

    def test_newest_conflict_source_wins(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Both sides changed, newest strategy: the newer source overwrites dest."""
        _synced(store, source, dest, "report.txt", "original")
        _write(source / "report.txt", "source edit", T1)
        _write(dest / "report.txt", "dest edit", T2)

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.NEWEST)

        assert len(stats.conflicts) == 1
        assert stats.conflicts[0].outcome is ConflictOutcome.SOURCE_WINS
        assert (dest / "report.txt").read_text() == "source edit"
        entry = store.get("Docs", "report.txt")
        assert entry is not None
        assert entry.fingerprint == compute_fingerprint(source / "report.txt")
        assert entry.synced_at == T1

    def test_keep_conflict(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Keep should preserve the destination copy under a conflict name."""
        _synced(store, source, dest, "file.txt", "original")
        _write(source / "file.txt", "source edit", T1)
        _write(dest / "file.txt", "dest edit", T2)

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.KEEP)

        assert stats.conflicts[0].outcome is ConflictOutcome.BOTH_KEPT
        assert (dest / "file.txt").read_text() == "source edit"
        assert (dest / "file.txt.conflict.20260108-101530").read_text() == "dest edit"

    def test_skip_conflict_leaves_files(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Skip should touch nothing and keep the old baseline."""
        _synced(store, source, dest, "file.txt", "original")
        baseline = store.get("Docs", "file.txt")
        _write(source / "file.txt", "source edit", T1)
        _write(dest / "file.txt", "dest edit", T2)

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.SKIP)

        assert stats.conflicts[0].outcome is ConflictOutcome.SKIPPED
        assert (source / "file.txt").read_text() == "source edit"
        assert (dest / "file.txt").read_text() == "dest edit"
        assert store.get("Docs", "file.txt") == baseline

    def test_source_only_change(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """A change on one side only is copied without a conflict."""
        _synced(store, source, dest, "a.txt", "original")
        _write(source / "a.txt", "updated", T1)

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.SKIP)

        assert stats.conflicts == []
        assert stats.files_transferred == 1
        assert (dest / "a.txt").read_text() == "updated"

    def test_dest_only_change(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Changes on the destination flow back to the source."""
        _synced(store, source, dest, "a.txt", "original")
        _write(dest / "a.txt", "remote edit", T1)

        stats = reconciler.reconcile("Docs", source, dest)

        assert stats.conflicts == []
        assert (source / "a.txt").read_text() == "remote edit"

    def test_new_files_copied_both_ways(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Files present on one side only should be copied and recorded."""
        _write(source / "local.txt", "l", T0)
        _write(dest / "sub" / "remote.txt", "r", T0)

        stats = reconciler.reconcile("Docs", source, dest)

        assert stats.files_transferred == 2
        assert (dest / "local.txt").read_text() == "l"
        assert (source / "sub" / "remote.txt").read_text() == "r"
        assert {e.path for e in store.list_entries("Docs")} == {"local.txt", "sub/remote.txt"}

    def test_deletion_propagates(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """An unchanged file deleted on one side is deleted on the other."""
        _synced(store, source, dest, "gone.txt", "bye")
        (dest / "gone.txt").unlink()

        reconciler.reconcile("Docs", source, dest)

        assert not (source / "gone.txt").exists()
        assert store.get("Docs", "gone.txt") is None

    def test_first_appearance_newer_wins(
        self,
        reconciler: TwoWayReconciler,
        source: Path,
        dest: Path,
    ) -> None:
        """Without a baseline, differing files resolve to the newer side."""
        _write(source / "a.txt", "older", T2)
        _write(dest / "a.txt", "newer", T1)

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.SKIP)

        assert stats.conflicts == []
        assert (source / "a.txt").read_text() == "newer"

    def test_dry_run_changes_nothing(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Dry runs should count work without writing files or state."""
        _write(source / "a.txt", "a", T0)

        stats = reconciler.reconcile("Docs", source, dest, dry_run=True)

        assert stats.files_transferred == 1
        assert not (dest / "a.txt").exists()
        assert store.list_entries("Docs") == []

    def test_corrupt_baseline_is_no_conflict(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """An empty stored fingerprint is treated as no baseline, with a warning."""
        _write(source / "a.txt", "source", T1)
        _write(dest / "a.txt", "dest", T2)
        store.upsert("Docs", "a.txt", T0, "")

        stats = reconciler.reconcile("Docs", source, dest, ConflictStrategy.SKIP)

        assert stats.conflicts == []
        assert any("Cannot detect conflict for a.txt" in w for w in stats.warnings)
        assert (dest / "a.txt").read_text() == "source"


class TestRetention:
    """Baselines of long-unchanged files must survive retention pruning."""

    def test_old_file_deletion_after_prune(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """A file with an old mtime keeps its baseline, so its deletion propagates."""
        old = time.time() - 60 * 86400
        _write(source / "archive.txt", "kept for years", old)

        reconciler.reconcile("Docs", source, dest)
        assert (dest / "archive.txt").exists()

        assert store.prune("Docs", older_than=time.time() - 30 * 86400) == 0

        (source / "archive.txt").unlink()
        reconciler.reconcile("Docs", source, dest)

        assert not (dest / "archive.txt").exists()
        assert not (source / "archive.txt").exists()
        assert store.get("Docs", "archive.txt") is None

    def test_unchanged_pass_refreshes_baseline(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """A pass that finds a file unchanged should refresh its recorded time."""
        _synced(store, source, dest, "a.txt", "same")
        store.touch("Docs", ["a.txt"], recorded_at=100.0)

        before = time.time()
        reconciler.reconcile("Docs", source, dest)

        entry = store.get("Docs", "a.txt")
        assert entry is not None
        assert entry.synced_at == T0
        assert entry.recorded_at >= before

    def test_dry_run_does_not_refresh(
        self,
        reconciler: TwoWayReconciler,
        store: SyncStateStore,
        source: Path,
        dest: Path,
    ) -> None:
        """Dry runs leave recorded times alone."""
        _synced(store, source, dest, "a.txt", "same")
        store.touch("Docs", ["a.txt"], recorded_at=100.0)

        reconciler.reconcile("Docs", source, dest, dry_run=True)

        entry = store.get("Docs", "a.txt")
        assert entry is not None
        assert entry.recorded_at == 100.0
