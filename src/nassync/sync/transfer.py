"""Transfer invocation through rsync.

This module provides:
- TransferPlan: Resolved source/destination and options for one pass
- TransferInvoker: Builds and runs the rsync command
- parse_rsync_stats: Extracts counters from ``rsync --stats`` output
- classify_transfer_failure: Maps an rsync failure to a TransferErrorKind

Mode flags:
    | Mode        | rsync flags                      |
    |-------------|----------------------------------|
    | mirror      | --delete                         |
    | one-way     | (none)                           |
    | incremental | --update                         |
    | backup      | --backup --backup-dir=.backup    |
    | two-way     | not handled here, see reconcile  |
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass

from nassync.core.config import NasConfig
from nassync.core.errors import ConfigurationError, TransferError, TransferErrorKind
from nassync.core.process import CommandRunner, run_command
from nassync.core.types import SyncMode
from nassync.sync.types import TransferStats

logger = logging.getLogger(__name__)

BACKUP_DIR = ".backup"

# rsync exit codes
TRANSIENT_EXIT_CODES = frozenset({10, 12, 30, 35})
PROTOCOL_EXIT_CODES = frozenset({1, 2, 4, 5})

TRANSIENT_MARKERS = (
    "connection timed out",
    "operation timed out",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "no route to host",
    "host is down",
    "connection closed by remote host",
    "broken pipe",
)
AUTH_MARKERS = (
    "permission denied (publickey",
    "permission denied, please try again",
    "host key verification failed",
    "authentication failed",
    "too many authentication failures",
)

_FILES_RE = re.compile(r"Number of (?:regular )?files transferred:\s*([\d,.]+)")
_BYTES_RE = re.compile(r"Total transferred file size:\s*([\d,.]+)")

MODE_FLAGS: dict[SyncMode, list[str]] = {
    SyncMode.MIRROR: ["--delete"],
    SyncMode.ONE_WAY: [],
    SyncMode.INCREMENTAL: ["--update"],
    SyncMode.BACKUP: ["--backup", f"--backup-dir={BACKUP_DIR}"],
}


def _parse_count(raw: str) -> int:
    return int(raw.replace(",", "").replace(".", ""))


def parse_rsync_stats(output: str) -> tuple[int, int]:
    """Parse files and bytes transferred from ``rsync --stats`` output.

    Returns:
        Tuple of (files_transferred, bytes_transferred); zeros when absent.
    """
    files = 0
    size = 0
    match = _FILES_RE.search(output)
    if match:
        files = _parse_count(match.group(1))
    match = _BYTES_RE.search(output)
    if match:
        size = _parse_count(match.group(1))
    return files, size


def classify_transfer_failure(exit_code: int | None, stderr: str) -> TransferErrorKind:
    """Classify a failed transfer for retry decisions."""
    text = stderr.lower()
    if any(marker in text for marker in AUTH_MARKERS):
        return TransferErrorKind.AUTHENTICATION
    if exit_code in TRANSIENT_EXIT_CODES or any(marker in text for marker in TRANSIENT_MARKERS):
        return TransferErrorKind.TRANSIENT
    if exit_code in PROTOCOL_EXIT_CODES:
        return TransferErrorKind.PROTOCOL
    return TransferErrorKind.FAILED


@dataclass(frozen=True)
class TransferPlan:
    """One resolved transfer pass.

    Attributes:
        source: Local source directory.
        destination: Local directory or ``user@host:path`` address.
        mode: Sync mode (not two-way).
        exclude: rsync exclude patterns.
        remote: Whether destination goes through the ssh transport.
        dry_run: Simulate without changing anything.
    """

    source: str
    destination: str
    mode: SyncMode
    exclude: tuple[str, ...] = ()
    remote: bool = False
    dry_run: bool = False


class TransferInvoker:
    """Runs one rsync pass for a TransferPlan."""

    def __init__(
        self,
        nas: NasConfig,
        runner: CommandRunner = run_command,
        timeout: float | None = None,
        rsync_binary: str = "rsync",
    ) -> None:
        """Initialize the invoker.

        Args:
            nas: Remote host settings for the ssh transport.
            runner: Executes the rsync command.
            timeout: Seconds before the transfer is abandoned (None = no limit).
            rsync_binary: rsync executable name or path.
        """
        self._nas = nas
        self._runner = runner
        self._timeout = timeout
        self._rsync = rsync_binary

    def build_command(self, plan: TransferPlan) -> tuple[list[str], dict[str, str] | None]:
        """Build the rsync argument list and environment for a plan.

        Raises:
            ConfigurationError: If the plan cannot be expressed as one rsync call.
        """
        if plan.mode not in MODE_FLAGS:
            raise ConfigurationError(f"Sync mode {plan.mode.value} is not an rsync transfer")

        args = [self._rsync, "-a", "-z", "--stats"]
        if plan.dry_run:
            args.append("--dry-run")
        args.extend(f"--exclude={pattern}" for pattern in plan.exclude)
        args.extend(MODE_FLAGS[plan.mode])

        env: dict[str, str] | None = None
        if plan.remote:
            ssh = f"ssh -p {self._nas.port}"
            if self._nas.key_path is not None:
                ssh += f" -i {self._nas.key_path}"
            args.extend(["-e", ssh])
            if self._nas.key_path is None and self._nas.password is not None:
                logger.warning(
                    "Using password authentication - consider using SSH keys for better security"
                )
                args = ["sshpass", "-e", *args]
                env = {**os.environ, "SSHPASS": self._nas.password}

        # Trailing slash: copy the directory contents, not the directory itself
        source = plan.source if plan.source.endswith("/") else plan.source + "/"
        args.extend([source, plan.destination])
        return args, env

    def run(self, plan: TransferPlan) -> TransferStats:
        """Execute one transfer pass.

        Returns:
            Counters parsed from the rsync statistics.

        Raises:
            TransferError: If rsync fails, times out or cannot be started.
        """
        args, env = self.build_command(plan)
        logger.debug("Executing rsync command: %s", args)

        try:
            result = self._runner(args, timeout=self._timeout, env=env)
        except subprocess.TimeoutExpired as e:
            raise TransferError(
                TransferErrorKind.TRANSIENT,
                f"Transfer timed out after {self._timeout:.0f}s",
            ) from e
        except OSError as e:
            raise TransferError(
                TransferErrorKind.FAILED,
                f"Failed to execute rsync command: {e}",
            ) from e

        if not result.ok:
            stderr = result.stderr.strip()
            kind = classify_transfer_failure(result.returncode, stderr)
            logger.error("Rsync failed (exit %d, %s): %s", result.returncode, kind.value, stderr)
            raise TransferError(
                kind,
                f"Rsync command failed with exit code {result.returncode}: {stderr}",
                exit_code=result.returncode,
                stderr=stderr,
            )

        files, size = parse_rsync_stats(result.stdout)
        logger.info(
            "Transferred %d files (%.2f MB)%s",
            files,
            size / (1024 * 1024),
            " [dry run]" if plan.dry_run else "",
        )
        return TransferStats(files_transferred=files, bytes_transferred=size)
