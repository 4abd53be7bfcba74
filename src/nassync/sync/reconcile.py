"""Two-way reconciliation between two local trees.

This module provides:
- scan_tree: Lists regular files of a tree, honouring exclusions
- TwoWayReconciler: Compares both trees against the stored baselines,
  applies one-sided changes and routes two-sided ones to the resolver

Decision matrix (b = stored baseline fingerprint):
    | Source     | Destination | Baseline      | Action                       |
    |------------|-------------|---------------|------------------------------|
    | present    | present     | any, same fp  | record or confirm baseline   |
    | changed    | == b        | b             | copy source -> destination   |
    | == b       | changed     | b             | copy destination -> source   |
    | changed    | changed     | b             | conflict -> resolver         |
    | present    | present     | none, differ  | newer mtime wins (no conflict)|
    | present    | missing     | none          | copy source -> destination   |
    | == b       | missing     | b             | delete source                |
    | changed    | missing     | b             | copy source -> destination   |
    | missing    | missing     | b             | forget baseline              |
    (and the mirror images for destination-only paths)
"""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Callable
from pathlib import Path

from nassync.core.errors import ConflictDetectionError, StateStoreError
from nassync.core.fingerprint import compute_fingerprint
from nassync.core.types import ConflictStrategy
from nassync.state import SyncStateEntry, SyncStateStore
from nassync.sync.conflict import ConflictResolver, copy_file_atomic
from nassync.sync.ignore import ExclusionPatterns
from nassync.sync.types import FileMeta, TransferStats

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".nassync.tmp"


def scan_tree(root: Path, exclusions: ExclusionPatterns) -> dict[str, os.stat_result]:
    """List regular files below root.

    Args:
        root: Tree root.
        exclusions: Patterns of paths to leave out.

    Returns:
        Mapping of forward-slash relative path to stat result.
    """
    files: dict[str, os.stat_result] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")

        kept_dirs = []
        for name in dirnames:
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if not exclusions.matches_relative(rel, is_dir=True):
                kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in filenames:
            if name.endswith(TEMP_SUFFIX):
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if exclusions.matches_relative(rel):
                continue
            full = Path(dirpath) / name
            try:
                st = full.lstat()
            except OSError as e:
                logger.debug("Skipping %s: %s", full, e)
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            files[rel] = st
    return files


class TwoWayReconciler:
    """Reconciles a source and a destination tree in both directions."""

    def __init__(
        self,
        store: SyncStateStore,
        resolver: ConflictResolver | None = None,
        fingerprint: Callable[[Path], str] = compute_fingerprint,
    ) -> None:
        self._store = store
        self._resolver = resolver or ConflictResolver()
        self._fingerprint = fingerprint

    def _baseline(self, profile: str, path: str, stats: TransferStats) -> SyncStateEntry | None:
        try:
            entry = self._store.get(profile, path)
            if entry is not None and not entry.fingerprint:
                raise ConflictDetectionError(path, "stored fingerprint is empty")
            return entry
        except StateStoreError as e:
            error = ConflictDetectionError(path, str(e))
        except ConflictDetectionError as e:
            error = e
        logger.warning("%s; treating as no conflict", error)
        stats.warnings.append(str(error))
        return None

    def _record(
        self,
        profile: str,
        path: str,
        meta: FileMeta,
        stats: TransferStats,
        dry_run: bool,
    ) -> None:
        if dry_run:
            return
        try:
            self._store.upsert(profile, path, meta.mtime, meta.fingerprint)
        except StateStoreError as e:
            logger.error("Failed to persist sync state for %s: %s", path, e)
            stats.warnings.append(str(e))

    def _forget(self, profile: str, path: str, stats: TransferStats, dry_run: bool) -> None:
        if dry_run:
            return
        try:
            self._store.delete(profile, path)
        except StateStoreError as e:
            logger.error("Failed to remove sync state for %s: %s", path, e)
            stats.warnings.append(str(e))

    def _meta(self, root: Path, path: str, st: os.stat_result) -> FileMeta:
        return FileMeta(
            mtime=st.st_mtime,
            size=st.st_size,
            fingerprint=self._fingerprint(root / path),
        )

    def _copy(
        self,
        src_root: Path,
        dst_root: Path,
        path: str,
        direction: str,
        stats: TransferStats,
        dry_run: bool,
    ) -> bool:
        logger.info("%s %s", direction, path)
        if dry_run:
            stats.files_transferred += 1
            return True
        try:
            stats.bytes_transferred += copy_file_atomic(src_root / path, dst_root / path)
        except OSError as e:
            logger.error("Failed to copy %s (%s): %s", path, direction, e)
            stats.warnings.append(f"{path}: copy failed: {e}")
            return False
        stats.files_transferred += 1
        return True

    def _delete(self, root: Path, path: str, stats: TransferStats, dry_run: bool) -> bool:
        logger.info("Deleting %s (removed on the other side)", root / path)
        if dry_run:
            return True
        try:
            (root / path).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete %s: %s", root / path, e)
            stats.warnings.append(f"{path}: delete failed: {e}")
            return False
        return True

    def reconcile(
        self,
        profile: str,
        source_root: Path,
        dest_root: Path,
        strategy: ConflictStrategy = ConflictStrategy.SKIP,
        exclude: tuple[str, ...] = (),
        dry_run: bool = False,
    ) -> TransferStats:
        """Run one two-way pass.

        Args:
            profile: Profile name (state store namespace).
            source_root: Local profile root.
            dest_root: Destination root beneath the mount point.
            strategy: Conflict resolution strategy.
            exclude: Exclusion patterns applied to both trees.
            dry_run: Decide and log, but write nothing.

        Returns:
            TransferStats including ConflictRecords and warnings.
        """
        exclusions = ExclusionPatterns(exclude)
        source_files = scan_tree(source_root, exclusions)
        dest_files = scan_tree(dest_root, exclusions)
        stats = TransferStats()
        confirmed: list[str] = []

        logger.debug(
            "Two-way scan for %s: %d source files, %d destination files",
            profile,
            len(source_files),
            len(dest_files),
        )

        for path in sorted(source_files.keys() | dest_files.keys()):
            src_st = source_files.get(path)
            dst_st = dest_files.get(path)
            baseline = self._baseline(profile, path, stats)

            if src_st is not None and dst_st is not None:
                self._reconcile_pair(
                    profile, path, source_root, dest_root, src_st, dst_st,
                    baseline, strategy, stats, dry_run, confirmed,
                )
            elif src_st is not None:
                self._reconcile_one_side(
                    profile, path, source_root, dest_root, src_st, baseline,
                    "Copying to destination:", stats, dry_run,
                )
            elif dst_st is not None:
                self._reconcile_one_side(
                    profile, path, dest_root, source_root, dst_st, baseline,
                    "Copying to source:", stats, dry_run,
                )

        self._forget_vanished(profile, source_files.keys() | dest_files.keys(), stats, dry_run)
        self._confirm(profile, confirmed, stats, dry_run)
        return stats

    def _confirm(
        self, profile: str, paths: list[str], stats: TransferStats, dry_run: bool
    ) -> None:
        # Unchanged baselines stay fresh for retention pruning
        if dry_run or not paths:
            return
        try:
            self._store.touch(profile, paths)
        except StateStoreError as e:
            logger.warning("Failed to refresh sync state for %s: %s", profile, e)
            stats.warnings.append(str(e))

    def _reconcile_pair(
        self,
        profile: str,
        path: str,
        source_root: Path,
        dest_root: Path,
        src_st: os.stat_result,
        dst_st: os.stat_result,
        baseline: SyncStateEntry | None,
        strategy: ConflictStrategy,
        stats: TransferStats,
        dry_run: bool,
        confirmed: list[str],
    ) -> None:
        # Identical size and mtime on both sides with a baseline: nothing to do
        if (
            baseline is not None
            and src_st.st_size == dst_st.st_size
            and src_st.st_mtime == dst_st.st_mtime
        ):
            confirmed.append(path)
            return

        source = self._meta(source_root, path, src_st)
        dest = self._meta(dest_root, path, dst_st)

        if source.fingerprint == dest.fingerprint:
            if baseline is None or baseline.fingerprint != source.fingerprint:
                self._record(profile, path, source, stats, dry_run)
            else:
                confirmed.append(path)
            return

        if baseline is None:
            # First appearance on both sides: not a conflict, newer side wins
            if source.mtime > dest.mtime:
                if self._copy(source_root, dest_root, path, "Copying to destination:", stats, dry_run):
                    self._record(profile, path, source, stats, dry_run)
            elif dest.mtime > source.mtime:
                if self._copy(dest_root, source_root, path, "Copying to source:", stats, dry_run):
                    self._record(profile, path, dest, stats, dry_run)
            else:
                logger.warning("%s differs on both sides with equal mtimes, leaving as is", path)
                stats.warnings.append(f"{path}: differs with equal mtimes, not synchronized")
            return

        source_changed = source.fingerprint != baseline.fingerprint
        dest_changed = dest.fingerprint != baseline.fingerprint

        if source_changed and dest_changed:
            record = self._resolver.resolve(path, source, dest, strategy)
            stats.conflicts.append(record)
            try:
                applied = self._resolver.apply(record, source_root, dest_root, dry_run=dry_run)
            except OSError as e:
                logger.error("Failed to apply resolution for %s: %s", path, e)
                stats.warnings.append(f"{path}: resolution failed: {e}")
                return
            stats.files_transferred += applied.files_written
            stats.bytes_transferred += applied.bytes_written
            if applied.winner is not None:
                self._record(profile, path, applied.winner, stats, dry_run)
        elif source_changed:
            if self._copy(source_root, dest_root, path, "Copying to destination:", stats, dry_run):
                self._record(profile, path, source, stats, dry_run)
        elif dest_changed:
            if self._copy(dest_root, source_root, path, "Copying to source:", stats, dry_run):
                self._record(profile, path, dest, stats, dry_run)

    def _reconcile_one_side(
        self,
        profile: str,
        path: str,
        present_root: Path,
        missing_root: Path,
        st: os.stat_result,
        baseline: SyncStateEntry | None,
        direction: str,
        stats: TransferStats,
        dry_run: bool,
    ) -> None:
        meta = self._meta(present_root, path, st)

        if baseline is not None and meta.fingerprint == baseline.fingerprint:
            # Unchanged here, so it was deleted on the other side
            if self._delete(present_root, path, stats, dry_run):
                self._forget(profile, path, stats, dry_run)
            return

        # New here, or modified here after being deleted there: modification wins
        if self._copy(present_root, missing_root, path, direction, stats, dry_run):
            self._record(profile, path, meta, stats, dry_run)

    def _forget_vanished(
        self,
        profile: str,
        present: set[str],
        stats: TransferStats,
        dry_run: bool,
    ) -> None:
        try:
            entries = self._store.list_entries(profile)
        except StateStoreError as e:
            logger.error("Failed to list sync state for %s: %s", profile, e)
            stats.warnings.append(str(e))
            return
        for entry in entries:
            if entry.path not in present:
                logger.debug("Forgetting %s (deleted on both sides)", entry.path)
                self._forget(profile, entry.path, stats, dry_run)
