"""SMB share mount lifecycle.

This module provides:
- MountManager: Acquires, health-checks and releases the share mount
- MountSession: Live binding of the mount point to the share
- CredentialMaterial: Username/password/domain for the mount command
- classify_mount_error: Maps mount stderr to a MountErrorKind

Sessions are leased by profiles. acquire() adds the profile as a holder
and release() removes it; the share is only unmounted once no holder is
left, so one profile can never unmount the share under another profile's
running transfer. Persistent sessions are not released between cycles
and are health-checked instead.

Mount state is verified against the kernel mount table rather than
trusted from memory, so a share unmounted behind our back is noticed.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from nassync.core.config import MountConfig, SyncProfile
from nassync.core.errors import MountError, MountErrorKind
from nassync.core.process import CommandRunner, run_command
from nassync.core.types import MountState

logger = logging.getLogger(__name__)

DEFAULT_MOUNTS_TABLE = Path("/proc/self/mounts")
UNMOUNT_TIMEOUT = 30.0

# errno values reported by stat() on a dead network mount
STALE_ERRNOS = frozenset({errno.ESTALE, errno.ENOTCONN, errno.EHOSTDOWN, errno.EIO})

# Checked in order; the first match wins
_ERROR_PATTERNS: list[tuple[tuple[str, ...], MountErrorKind]] = [
    (("mount error(13)",), MountErrorKind.INVALID_CREDENTIALS),
    (("permission denied", "only root"), MountErrorKind.PERMISSION_DENIED),
    (
        (
            "host is down",
            "network is unreachable",
            "no route to host",
            "could not resolve",
            "mount error(112)",
            "mount error(115)",
        ),
        MountErrorKind.NETWORK_UNREACHABLE,
    ),
    (("timed out", "timeout"), MountErrorKind.TIMEOUT),
    (("stale file handle",), MountErrorKind.STALE_MOUNT),
    (("already mounted",), MountErrorKind.ALREADY_MOUNTED_DIFFERENT_SHARE),
]


def classify_mount_error(stderr: str) -> MountErrorKind:
    """Classify a failed mount by its stderr text."""
    text = stderr.lower()
    for needles, kind in _ERROR_PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    return MountErrorKind.MOUNT_FAILED


def normalize_share(share: str) -> str:
    """Normalize a share address for comparison."""
    return share.replace("\\", "/").rstrip("/").lower()


def _unescape_mount_field(value: str) -> str:
    # The mount table escapes space, tab, newline and backslash as octal
    return re.sub(r"\\([0-7]{3})", lambda m: chr(int(m.group(1), 8)), value)


@dataclass(frozen=True)
class CredentialMaterial:
    """Credentials handed to the mount command."""

    username: str
    password: str
    domain: str = ""

    @classmethod
    def from_config(cls, config: MountConfig) -> CredentialMaterial:
        return cls(username=config.username, password=config.password, domain=config.domain)

    def render(self) -> str:
        """Render the key=value credential artifact."""
        lines = [f"username={self.username}", f"password={self.password}"]
        if self.domain:
            lines.append(f"domain={self.domain}")
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return f"CredentialMaterial(username={self.username!r}, domain={self.domain!r})"


@dataclass
class MountSession:
    """A mount point bound (or being bound) to a share.

    Attributes:
        share_path: Share address.
        mount_point: Local mount point.
        persistent: Kept mounted between sync cycles.
        state: Current lifecycle state.
        credentials_file: Credential artifact while it exists.
        last_health_check: Unix timestamp of the last health check.
        holders: Profiles currently leasing the session.
        owned: Whether this process performed the mount.
    """

    share_path: str
    mount_point: Path
    persistent: bool
    state: MountState = MountState.UNMOUNTED
    credentials_file: Path | None = None
    last_health_check: float | None = None
    holders: set[str] = field(default_factory=set)
    owned: bool = False

    @property
    def is_mounted(self) -> bool:
        return self.state is MountState.MOUNTED


class MountManager:
    """Manages the SMB mount used by profiles with use_smb_mount."""

    def __init__(
        self,
        config: MountConfig,
        credentials_dir: Path,
        runner: CommandRunner = run_command,
        mounts_table: Path = DEFAULT_MOUNTS_TABLE,
        stat_func: Callable[[Path], object] = os.stat,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Share mount settings.
            credentials_dir: Private directory for credential artifacts.
            runner: Executes mount/umount commands.
            mounts_table: Kernel mount table to verify mount state.
            stat_func: Used to check the mount point for staleness.
        """
        self._config = config
        self._credentials_dir = Path(credentials_dir)
        self._runner = runner
        self._mounts_table = Path(mounts_table)
        self._stat = stat_func
        self._lock = threading.RLock()
        self._session = MountSession(
            share_path=config.share_path,
            mount_point=config.mount_point,
            persistent=config.persistent,
        )

    @property
    def config(self) -> MountConfig:
        return self._config

    @property
    def session(self) -> MountSession:
        return self._session

    # === Mount table inspection ===

    def mounted_source(self) -> str | None:
        """Return the share mounted on the mount point, or None.

        Falls back to ``mountpoint -q`` when the mount table is unreadable,
        in which case the source is reported as the configured share.
        """
        target = os.path.normpath(str(self._config.mount_point))
        try:
            lines = self._mounts_table.read_text(encoding="utf-8").splitlines()
        except OSError:
            result = self._runner(["mountpoint", "-q", target], timeout=10.0)
            return self._config.share_path if result.ok else None

        source: str | None = None
        for line in lines:
            fields = line.split()
            if len(fields) < 2:
                continue
            if os.path.normpath(_unescape_mount_field(fields[1])) == target:
                # Later entries shadow earlier ones on the same mount point
                source = _unescape_mount_field(fields[0])
        return source

    def _is_correct_share(self, source: str) -> bool:
        return normalize_share(source) == normalize_share(self._config.share_path)

    def _is_stale(self) -> bool:
        try:
            self._stat(self._config.mount_point)
        except OSError as e:
            return e.errno in STALE_ERRNOS
        return False

    # === Credentials ===

    def _write_credentials(self) -> Path:
        try:
            self._credentials_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self._credentials_dir, 0o700)
            creds_file = self._credentials_dir / f"smb_creds_{os.getpid()}.tmp"
            if creds_file.exists():
                creds_file.unlink()
            fd = os.open(creds_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(CredentialMaterial.from_config(self._config).render())
        except OSError as e:
            raise MountError(
                MountErrorKind.MOUNT_FAILED,
                f"Failed to create credentials file: {e}",
                mount_point=str(self._config.mount_point),
            ) from e

        logger.debug("Created credentials file: %s", creds_file)
        self._session.credentials_file = creds_file
        return creds_file

    def _cleanup_credentials(self) -> None:
        creds_file = self._session.credentials_file
        if creds_file is None:
            return
        try:
            creds_file.unlink(missing_ok=True)
            logger.debug("Removed credentials file: %s", creds_file)
        except OSError as e:
            logger.error("Failed to remove credentials file %s: %s", creds_file, e)
        self._session.credentials_file = None

    # === Mount / unmount primitives ===

    def _mount_options(self, creds_file: Path) -> str:
        options = f"credentials={creds_file}"
        if self._config.mount_options:
            options = f"{options},{self._config.mount_options}"
        return options

    def _mount(self, allow_stale_retry: bool = True) -> None:
        session = self._session
        mount_point = self._config.mount_point
        session.state = MountState.MOUNTING

        if not mount_point.exists():
            logger.info("Creating mount point: %s", mount_point)
            try:
                mount_point.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                session.state = MountState.FAILED
                kind = (
                    MountErrorKind.PERMISSION_DENIED
                    if isinstance(e, PermissionError)
                    else MountErrorKind.MOUNT_FAILED
                )
                raise MountError(
                    kind,
                    f"Cannot create mount point {mount_point}: {e}",
                    mount_point=str(mount_point),
                ) from e

        creds_file = self._write_credentials()
        args = [
            "mount",
            "-t",
            "cifs",
            self._config.share_path,
            str(mount_point),
            "-o",
            self._mount_options(creds_file),
        ]
        logger.info("Mounting SMB share: %s -> %s", self._config.share_path, mount_point)

        try:
            result = self._runner(args, timeout=self._config.mount_timeout)
        except subprocess.TimeoutExpired as e:
            self._cleanup_credentials()
            session.state = MountState.FAILED
            raise MountError(
                MountErrorKind.TIMEOUT,
                f"Mount of {self._config.share_path} timed out after "
                f"{self._config.mount_timeout:.0f}s",
                mount_point=str(mount_point),
            ) from e
        except OSError as e:
            self._cleanup_credentials()
            session.state = MountState.FAILED
            raise MountError(
                MountErrorKind.MOUNT_FAILED,
                f"Failed to execute mount command: {e}",
                mount_point=str(mount_point),
            ) from e

        if not result.ok:
            self._cleanup_credentials()
            stderr = result.stderr.strip()
            kind = classify_mount_error(stderr)
            logger.error("SMB mount failed: %s", stderr)

            if kind is MountErrorKind.STALE_MOUNT and allow_stale_retry:
                logger.warning("Stale mount on %s, forcing unmount and retrying", mount_point)
                self._force_unmount()
                self._mount(allow_stale_retry=False)
                return

            session.state = MountState.FAILED
            raise MountError(
                kind,
                f"Mount of {self._config.share_path} failed: {stderr}",
                mount_point=str(mount_point),
                stderr=stderr,
            )

        logger.info("SMB share mounted successfully")
        session.state = MountState.MOUNTED
        session.owned = True
        session.last_health_check = time.time()

        if session.persistent:
            logger.debug("Keeping credentials file for persistent mount")
        else:
            self._cleanup_credentials()

    def _force_unmount(self) -> bool:
        target = str(self._config.mount_point)
        try:
            result = self._runner(["umount", "-l", target], timeout=UNMOUNT_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("Lazy unmount of %s failed: %s", target, e)
            return False
        if not result.ok:
            logger.error("Lazy unmount of %s failed: %s", target, result.stderr.strip())
            return False
        logger.info("Lazy unmount of %s successful", target)
        return True

    def _unmount(self) -> None:
        session = self._session
        target = str(self._config.mount_point)
        session.state = MountState.UNMOUNTING

        try:
            if self.mounted_source() is None:
                logger.warning(
                    "Mount point %s is no longer mounted (removed externally); "
                    "treating as released",
                    target,
                )
                session.state = MountState.UNMOUNTED
                return

            logger.info("Unmounting SMB share: %s", target)
            try:
                result = self._runner(["umount", target], timeout=UNMOUNT_TIMEOUT)
                stderr = result.stderr.strip()
                ok = result.ok
            except (OSError, subprocess.TimeoutExpired) as e:
                stderr = str(e)
                ok = False

            if ok:
                logger.info("SMB share unmounted successfully")
            elif "not mounted" in stderr.lower():
                logger.warning("%s was already unmounted: %s", target, stderr)
            else:
                logger.warning("Graceful unmount failed: %s", stderr)
                logger.info("Attempting lazy unmount...")
                if not self._force_unmount():
                    session.state = MountState.FAILED
                    raise MountError(
                        MountErrorKind.UNMOUNT_FAILED,
                        f"Failed to unmount {target}, may need manual cleanup",
                        mount_point=target,
                        stderr=stderr,
                    )

            session.state = MountState.UNMOUNTED
            session.owned = False
        finally:
            self._cleanup_credentials()

    # === Public contract ===

    def acquire(self, profile: SyncProfile) -> MountSession:
        """Ensure the share is mounted and lease it to a profile.

        Reuses an existing mount of the correct share without issuing a
        mount command.

        Raises:
            MountError: If the share cannot be mounted.
        """
        with self._lock:
            session = self._session
            logger.info("Checking mount status: %s", self._config.mount_point)
            source = self.mounted_source()

            if source is not None:
                if not self._is_correct_share(source):
                    session.state = MountState.FAILED
                    raise MountError(
                        MountErrorKind.ALREADY_MOUNTED_DIFFERENT_SHARE,
                        f"{self._config.mount_point} is already mounted from {source}, "
                        f"expected {self._config.share_path}",
                        mount_point=str(self._config.mount_point),
                    )

                if self._is_stale():
                    logger.warning(
                        "Mount point %s is stale, forcing unmount and remounting",
                        self._config.mount_point,
                    )
                    self._force_unmount()
                    self._mount(allow_stale_retry=False)
                else:
                    if not session.is_mounted:
                        logger.info(
                            "Mount point %s is already mounted, reusing it",
                            self._config.mount_point,
                        )
                        session.state = MountState.MOUNTED
                    session.last_health_check = time.time()
            else:
                if session.is_mounted:
                    logger.warning(
                        "Mount point %s disappeared, remounting", self._config.mount_point
                    )
                    session.owned = False
                self._mount()

            session.holders.add(profile.name)
            return session

    def release(self, session: MountSession, holder: str) -> None:
        """Drop a profile's lease and unmount once nobody holds the share.

        Mounts this process did not create are left in place.

        Raises:
            MountError: If the share could not be unmounted even lazily.
        """
        with self._lock:
            session.holders.discard(holder)
            if session.holders:
                logger.debug(
                    "Mount %s still held by %s", session.mount_point, sorted(session.holders)
                )
                return
            if not session.owned:
                logger.info("Leaving pre-existing mount %s in place", session.mount_point)
                session.state = MountState.UNMOUNTED
                self._cleanup_credentials()
                return
            self._unmount()

    def health_check(self, session: MountSession) -> bool:
        """Check that the share is still mounted and responsive."""
        with self._lock:
            session.last_health_check = time.time()
            source = self.mounted_source()
            if source is None or not self._is_correct_share(source):
                logger.warning("Health check: %s is not mounted", session.mount_point)
                return False
            if self._is_stale():
                logger.warning("Health check: %s is stale", session.mount_point)
                return False
            return True

    def remount(self, session: MountSession) -> MountSession:
        """Transparently re-establish an unhealthy session, keeping its holders.

        Raises:
            MountError: If the share cannot be mounted again.
        """
        with self._lock:
            logger.info("Remounting %s", session.mount_point)
            source = self.mounted_source()
            if source is not None and not self._is_correct_share(source):
                session.state = MountState.FAILED
                raise MountError(
                    MountErrorKind.ALREADY_MOUNTED_DIFFERENT_SHARE,
                    f"{session.mount_point} is now mounted from {source}",
                    mount_point=str(session.mount_point),
                )
            if source is not None:
                self._force_unmount()
            self._cleanup_credentials()
            self._mount()
            return session

    def release_all(self) -> list[str]:
        """Unmount regardless of holders or persistence (process shutdown).

        Returns:
            Mount points that could not be released cleanly.
        """
        with self._lock:
            session = self._session
            session.holders.clear()
            if not session.owned:
                self._cleanup_credentials()
                return []
            try:
                self._unmount()
            except MountError as e:
                logger.error("Could not release %s: %s", session.mount_point, e)
                return [str(session.mount_point)]
            return []
