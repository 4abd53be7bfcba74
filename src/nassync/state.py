"""Persistent sync state for two-way synchronization.

This module provides:
- SyncStateStore: SQLite-based baseline store
- SyncStateEntry: Last synchronized fingerprint of one file

Architecture:
    One row per (profile, relative path). A row is the last common state
    both sides agreed on; it is written only after a path has been
    reconciled. Absence of a row means the path was never seen by the
    profile, which is never treated as a conflict.

    Each profile only reads and writes its own key namespace, so the
    store can be shared by all profile threads behind a single lock.

    ``synced_at`` is the mtime of the agreed version. ``recorded_at`` is
    the wall-clock time a sync pass last wrote or confirmed the row, and
    is the only timestamp retention pruning looks at.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from nassync.core.errors import StateStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncStateEntry:
    """Baseline of a tracked file.

    Attributes:
        profile: Owning profile name.
        path: Path relative to the profile root.
        synced_at: Modification time of the synchronized version.
        fingerprint: Content fingerprint of the synchronized version.
        recorded_at: When a sync pass last wrote or confirmed the entry.
    """

    profile: str
    path: str
    synced_at: float
    fingerprint: str
    recorded_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SyncStateEntry:
        """Create SyncStateEntry from database row."""
        return cls(
            profile=row["profile"],
            path=row["path"],
            synced_at=row["synced_at"],
            fingerprint=row["fingerprint"],
            recorded_at=row["recorded_at"],
        )


class SyncStateStore:
    """SQLite-based sync state shared by all profiles."""

    def __init__(self, db_path: Path) -> None:
        """Open (and create if needed) the state database.

        Args:
            db_path: Path to SQLite database file.

        Raises:
            StateStoreError: If the database cannot be opened.
        """
        self._db_path = Path(db_path)
        self._lock = threading.RLock()

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except (OSError, sqlite3.Error) as e:
            raise StateStoreError(f"Failed to open sync state database {db_path}: {e}") from e

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_state (
                profile TEXT NOT NULL,
                path TEXT NOT NULL,
                synced_at REAL NOT NULL,
                fingerprint TEXT NOT NULL,
                recorded_at REAL NOT NULL,
                PRIMARY KEY (profile, path)
            );
        """)
        columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(sync_state)")}
        if "recorded_at" not in columns:
            # Databases written before recorded_at existed
            logger.info("Upgrading sync state database %s", self._db_path)
            self._conn.executescript("""
                ALTER TABLE sync_state ADD COLUMN recorded_at REAL NOT NULL DEFAULT 0;
                UPDATE sync_state SET recorded_at = strftime('%s', 'now');
                DROP INDEX IF EXISTS idx_sync_state_synced_at;
            """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_sync_state_recorded_at "
            "ON sync_state (profile, recorded_at)"
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get(self, profile: str, path: str) -> SyncStateEntry | None:
        """Get the baseline for a path.

        Returns:
            SyncStateEntry if the path was synchronized before, None otherwise.
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM sync_state WHERE profile = ? AND path = ?",
                    (profile, path),
                ).fetchone()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to read state for {profile}:{path}: {e}") from e
        if row is None:
            return None
        return SyncStateEntry.from_row(row)

    def upsert(
        self,
        profile: str,
        path: str,
        synced_at: float | None,
        fingerprint: str,
        recorded_at: float | None = None,
    ) -> None:
        """Record the synchronized version of a path.

        Args:
            profile: Owning profile name.
            path: Path relative to the profile root.
            synced_at: Modification time of the agreed version (defaults to now).
            fingerprint: Content fingerprint of the agreed version.
            recorded_at: Time of the sync pass (defaults to now).
        """
        now = time.time()
        when = now if synced_at is None else synced_at
        recorded = now if recorded_at is None else recorded_at
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO sync_state (profile, path, synced_at, fingerprint, recorded_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (profile, path) DO UPDATE SET
                        synced_at = excluded.synced_at,
                        fingerprint = excluded.fingerprint,
                        recorded_at = excluded.recorded_at
                    """,
                    (profile, path, when, fingerprint, recorded),
                )
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to write state for {profile}:{path}: {e}") from e
        logger.debug("Updated sync state for %s:%s", profile, path)

    def delete(self, profile: str, path: str) -> None:
        """Forget a path (deleted on both sides)."""
        try:
            with self._lock:
                self._conn.execute(
                    "DELETE FROM sync_state WHERE profile = ? AND path = ?",
                    (profile, path),
                )
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to delete state for {profile}:{path}: {e}") from e

    def touch(self, profile: str, paths: list[str], recorded_at: float | None = None) -> None:
        """Mark baselines as confirmed by a sync pass without changing them."""
        if not paths:
            return
        when = time.time() if recorded_at is None else recorded_at
        try:
            with self._lock:
                self._conn.executemany(
                    "UPDATE sync_state SET recorded_at = ? WHERE profile = ? AND path = ?",
                    [(when, profile, path) for path in paths],
                )
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to refresh state for {profile}: {e}") from e

    def prune(self, profile: str, older_than: float) -> int:
        """Delete entries of a profile not written or confirmed since a timestamp.

        Returns:
            Number of entries removed.
        """
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "DELETE FROM sync_state WHERE profile = ? AND recorded_at < ?",
                    (profile, older_than),
                )
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to prune state for {profile}: {e}") from e

        if removed:
            logger.info("Pruned %d sync state entries for profile %s", removed, profile)
        return removed

    def list_entries(self, profile: str) -> list[SyncStateEntry]:
        """List all entries of a profile ordered by path."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT * FROM sync_state WHERE profile = ? ORDER BY path",
                    (profile,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StateStoreError(f"Failed to list state for {profile}: {e}") from e
        return [SyncStateEntry.from_row(row) for row in rows]
