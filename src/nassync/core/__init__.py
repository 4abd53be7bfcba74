"""Core module - Configuration, errors, shared types and fingerprinting."""

from nassync.core.config import (
    AppConfig,
    EngineConfig,
    LoggingConfig,
    MountConfig,
    NasConfig,
    SyncProfile,
    get_config_dir,
    load_config,
    parse_config,
)
from nassync.core.errors import (
    ConfigurationError,
    ConflictDetectionError,
    MountError,
    MountErrorKind,
    NasSyncError,
    StateStoreError,
    TransferError,
    TransferErrorKind,
)
from nassync.core.fingerprint import compute_fingerprint
from nassync.core.types import (
    ChangeKind,
    ConflictOutcome,
    ConflictStrategy,
    MountState,
    ProfileState,
    RunStatus,
    SyncMode,
)

__all__ = [
    # Config
    "AppConfig",
    "EngineConfig",
    "LoggingConfig",
    "MountConfig",
    "NasConfig",
    "SyncProfile",
    "get_config_dir",
    "load_config",
    "parse_config",
    # Errors
    "ConfigurationError",
    "ConflictDetectionError",
    "MountError",
    "MountErrorKind",
    "NasSyncError",
    "StateStoreError",
    "TransferError",
    "TransferErrorKind",
    # Fingerprint
    "compute_fingerprint",
    # Types
    "ChangeKind",
    "ConflictOutcome",
    "ConflictStrategy",
    "MountState",
    "ProfileState",
    "RunStatus",
    "SyncMode",
]
