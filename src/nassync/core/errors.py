"""Exception hierarchy for nassync.

This module provides:
- NasSyncError: Base class for every error raised by nassync
- ConfigurationError: Invalid configuration or profile definition
- MountError / MountErrorKind: Share mount failures
- TransferError / TransferErrorKind: External transfer failures
- ConflictDetectionError: Unusable baseline for conflict detection
- StateStoreError: Sync state database failures
"""

from __future__ import annotations

from enum import Enum


class NasSyncError(Exception):
    """Base exception for nassync errors."""


class ConfigurationError(NasSyncError):
    """Invalid configuration. Fatal for the profile it belongs to."""


class MountErrorKind(str, Enum):
    """Classification of mount and unmount failures."""

    ALREADY_MOUNTED_DIFFERENT_SHARE = "already-mounted-different-share"
    PERMISSION_DENIED = "permission-denied"
    NETWORK_UNREACHABLE = "network-unreachable"
    INVALID_CREDENTIALS = "invalid-credentials"
    TIMEOUT = "timeout"
    STALE_MOUNT = "stale-mount"
    MOUNT_FAILED = "mount-failed"
    UNMOUNT_FAILED = "unmount-failed"

    @property
    def retryable(self) -> bool:
        """Whether a later attempt may succeed without operator action."""
        return self in (MountErrorKind.NETWORK_UNREACHABLE, MountErrorKind.TIMEOUT)


class MountError(NasSyncError):
    """Failed to mount, verify or unmount a share.

    Attributes:
        kind: Failure classification.
        mount_point: Mount point involved.
        stderr: Raw stderr of the external command, if any.
    """

    def __init__(
        self,
        kind: MountErrorKind,
        message: str,
        mount_point: str = "",
        stderr: str = "",
    ) -> None:
        self.kind = kind
        self.mount_point = mount_point
        self.stderr = stderr
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TransferErrorKind(str, Enum):
    """Classification of transfer failures."""

    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    FAILED = "failed"

    @property
    def retryable(self) -> bool:
        return self is TransferErrorKind.TRANSIENT


class TransferError(NasSyncError):
    """The external transfer utility failed.

    Attributes:
        kind: Failure classification.
        exit_code: Process exit code (None if it never exited).
        stderr: Raw stderr of the transfer process.
    """

    def __init__(
        self,
        kind: TransferErrorKind,
        message: str,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        self.kind = kind
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class ConflictDetectionError(NasSyncError):
    """A baseline entry is missing or corrupt.

    Treated as "no conflict" by the reconciler.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot detect conflict for {path}: {reason}")


class StateStoreError(NasSyncError):
    """Reading or writing the sync state database failed."""
