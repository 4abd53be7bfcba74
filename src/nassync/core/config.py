"""Configuration loading for nassync.

This module provides:
- get_config_dir: Per-installation private directory (~/.nassync)
- NasConfig, MountConfig, LoggingConfig, EngineConfig: Config sections
- SyncProfile: One source/destination synchronization unit
- AppConfig: The whole parsed configuration
- load_config / parse_config: TOML loading and validation

Global problems (unreadable file, no profiles, duplicate names) raise
ConfigurationError. Problems that only concern one profile are collected
in AppConfig.invalid_profiles so the remaining profiles can still run.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nassync.core.errors import ConfigurationError
from nassync.core.types import ConflictStrategy, SyncMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.toml")
DEFAULT_SSH_PORT = 22
DEFAULT_DEBOUNCE_SECONDS = 5.0
DEFAULT_MOUNT_TIMEOUT = 30.0


def get_config_dir() -> Path:
    """Get the private configuration directory for nassync.

    Returns:
        Path to ~/.nassync or equivalent.
    """
    return Path.home() / ".nassync"


def _expand(value: str) -> Path:
    return Path(value).expanduser()


def _require(data: dict[str, Any], key: str, section: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"Missing required key '{key}' in [{section}]")
    return data[key]


@dataclass(frozen=True)
class MountConfig:
    """SMB/CIFS share mount settings.

    Attributes:
        share_path: Share address (e.g. "//192.168.1.100/backups").
        mount_point: Local directory the share is mounted on.
        username: Share account name.
        password: Share account password.
        domain: Optional Windows domain.
        mount_options: Extra mount options appended to the option string.
        auto_unmount: Unmount after every cycle. False means persistent.
        mount_timeout: Seconds to wait for the mount command.
        enabled: Whether mounting is available at all.
    """

    share_path: str
    mount_point: Path
    username: str
    password: str
    domain: str = ""
    mount_options: str = ""
    auto_unmount: bool = True
    mount_timeout: float = DEFAULT_MOUNT_TIMEOUT
    enabled: bool = True

    @property
    def persistent(self) -> bool:
        """Persistent mounts survive between sync cycles."""
        return not self.auto_unmount

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MountConfig:
        section = "nas.smb"
        return cls(
            share_path=str(_require(data, "share_path", section)),
            mount_point=_expand(str(_require(data, "mount_point", section))),
            username=str(_require(data, "username", section)),
            password=str(_require(data, "password", section)),
            domain=str(data.get("domain", "")),
            mount_options=str(data.get("mount_options", "")),
            auto_unmount=bool(data.get("auto_unmount", True)),
            mount_timeout=float(data.get("mount_timeout", DEFAULT_MOUNT_TIMEOUT)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class NasConfig:
    """Remote host reached over ssh, plus the optional share mount."""

    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    password: str | None = None
    key_path: Path | None = None
    smb: MountConfig | None = None

    @property
    def has_ssh_auth(self) -> bool:
        return self.password is not None or self.key_path is not None

    @property
    def mount_available(self) -> bool:
        return self.smb is not None and self.smb.enabled

    def remote_address(self, remote_path: str) -> str:
        """Build the remote-copy address for a path on the NAS."""
        return f"{self.username}@{self.host}:{remote_path}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NasConfig:
        smb_data = data.get("smb")
        key_path = data.get("key_path")
        password = data.get("password")
        return cls(
            host=str(_require(data, "host", "nas")),
            username=str(_require(data, "username", "nas")),
            port=int(data.get("port", DEFAULT_SSH_PORT)),
            password=str(password) if password is not None else None,
            key_path=_expand(str(key_path)) if key_path else None,
            smb=MountConfig.from_dict(smb_data) if smb_data else None,
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Log output settings."""

    enabled: bool = True
    log_file: Path = field(default_factory=lambda: get_config_dir() / "logs" / "nassync.log")
    log_level: str = "info"
    console_output: bool = True
    file_output: bool = False
    rotate_enabled: bool = True
    max_file_size_mb: int = 10
    max_files: int = 5
    compress_rotated: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingConfig:
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            log_file=_expand(str(data["log_file"])) if "log_file" in data else defaults.log_file,
            log_level=str(data.get("log_level", defaults.log_level)),
            console_output=bool(data.get("console_output", defaults.console_output)),
            file_output=bool(data.get("file_output", defaults.file_output)),
            rotate_enabled=bool(data.get("rotate_enabled", defaults.rotate_enabled)),
            max_file_size_mb=int(data.get("max_file_size_mb", defaults.max_file_size_mb)),
            max_files=int(data.get("max_files", defaults.max_files)),
            compress_rotated=bool(data.get("compress_rotated", defaults.compress_rotated)),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Tuning knobs for the sync engine.

    Attributes:
        state_db: SQLite database holding two-way sync baselines.
        credentials_dir: Private directory for mount credential files.
        transfer_timeout: Seconds before a transfer is abandoned (None = no limit).
        transfer_retry_backoff: Delay before retrying a transient transfer failure.
        mount_retry_attempts: Mount attempts in watch mode before degrading.
        mount_retry_backoff: Initial delay between mount attempts (doubles).
        health_check_interval: Seconds between persistent mount health checks.
        shutdown_grace: Seconds to wait for in-flight cycles on shutdown.
        state_retention_days: Prune baselines older than this (0 = never).
    """

    state_db: Path = field(default_factory=lambda: get_config_dir() / "sync_state.db")
    credentials_dir: Path = field(default_factory=lambda: get_config_dir() / "credentials")
    transfer_timeout: float | None = None
    transfer_retry_backoff: float = 5.0
    mount_retry_attempts: int = 3
    mount_retry_backoff: float = 2.0
    health_check_interval: float = 60.0
    shutdown_grace: float = 30.0
    state_retention_days: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        defaults = cls()
        timeout = float(data.get("transfer_timeout", 0))
        return cls(
            state_db=_expand(str(data["state_db"])) if "state_db" in data else defaults.state_db,
            credentials_dir=(
                _expand(str(data["credentials_dir"]))
                if "credentials_dir" in data
                else defaults.credentials_dir
            ),
            transfer_timeout=timeout if timeout > 0 else None,
            transfer_retry_backoff=float(
                data.get("transfer_retry_backoff", defaults.transfer_retry_backoff)
            ),
            mount_retry_attempts=int(data.get("mount_retry_attempts", defaults.mount_retry_attempts)),
            mount_retry_backoff=float(data.get("mount_retry_backoff", defaults.mount_retry_backoff)),
            health_check_interval=float(
                data.get("health_check_interval", defaults.health_check_interval)
            ),
            shutdown_grace=float(data.get("shutdown_grace", defaults.shutdown_grace)),
            state_retention_days=int(data.get("state_retention_days", defaults.state_retention_days)),
        )


@dataclass(frozen=True)
class SyncProfile:
    """One configured source/destination synchronization unit.

    Immutable once loaded. ``remote_path`` is relative to the mount point
    when ``use_smb_mount`` is set, otherwise a path on the ssh host.
    """

    name: str
    local_path: Path
    remote_path: str
    sync_type: SyncMode
    enabled: bool = True
    exclude: tuple[str, ...] = ()
    watch_mode: bool = False
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    conflict_resolution: ConflictStrategy = ConflictStrategy.SKIP
    use_smb_mount: bool = False

    @property
    def is_two_way(self) -> bool:
        return self.sync_type is SyncMode.TWO_WAY

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncProfile:
        """Build a profile from a [[sync_profiles]] table.

        Raises:
            ConfigurationError: If the table is not a valid profile.
        """
        section = "sync_profiles"
        name = str(_require(data, "name", section)).strip()
        if not name:
            raise ConfigurationError("Profile name must not be empty")

        raw_type = str(_require(data, "sync_type", section))
        try:
            sync_type = SyncMode(raw_type)
        except ValueError:
            valid = ", ".join(m.value for m in SyncMode)
            raise ConfigurationError(
                f"Profile '{name}': invalid sync_type '{raw_type}' (expected one of: {valid})"
            ) from None

        raw_strategy = data.get("conflict_resolution")
        if raw_strategy is None:
            strategy = ConflictStrategy.SKIP
            if sync_type is SyncMode.TWO_WAY:
                logger.warning(
                    "Profile '%s' uses two-way sync without conflict_resolution specified. "
                    "Defaulting to 'skip'.",
                    name,
                )
        else:
            try:
                strategy = ConflictStrategy(str(raw_strategy))
            except ValueError:
                valid = ", ".join(s.value for s in ConflictStrategy)
                raise ConfigurationError(
                    f"Profile '{name}': invalid conflict_resolution '{raw_strategy}' "
                    f"(expected one of: {valid})"
                ) from None

        debounce = float(data.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS))
        if debounce < 0:
            raise ConfigurationError(f"Profile '{name}': debounce_seconds must be >= 0")

        exclude = data.get("exclude", [])
        if not isinstance(exclude, list):
            raise ConfigurationError(f"Profile '{name}': exclude must be a list of patterns")

        return cls(
            name=name,
            local_path=_expand(str(_require(data, "local_path", section))),
            remote_path=str(_require(data, "remote_path", section)),
            sync_type=sync_type,
            enabled=bool(data.get("enabled", True)),
            exclude=tuple(str(p) for p in exclude),
            watch_mode=bool(data.get("watch_mode", False)),
            debounce_seconds=debounce,
            conflict_resolution=strategy,
            use_smb_mount=bool(data.get("use_smb_mount", False)),
        )


@dataclass
class AppConfig:
    """Parsed configuration file."""

    nas: NasConfig
    profiles: list[SyncProfile]
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    invalid_profiles: dict[str, ConfigurationError] = field(default_factory=dict)

    def validate_profile(self, profile: SyncProfile) -> None:
        """Check a profile against the rest of the configuration.

        Raises:
            ConfigurationError: If the profile cannot run with this config.
        """
        if profile.use_smb_mount and not self.nas.mount_available:
            raise ConfigurationError(
                f"Profile '{profile.name}': use_smb_mount requires an enabled [nas.smb] section"
            )
        if profile.is_two_way and not profile.use_smb_mount:
            raise ConfigurationError(
                f"Profile '{profile.name}': two-way sync needs a locally mounted "
                "destination (set use_smb_mount = true)"
            )
        if not profile.use_smb_mount and not self.nas.has_ssh_auth:
            raise ConfigurationError(
                f"Profile '{profile.name}': either password or key_path must be "
                "specified in [nas] for ssh transfers"
            )

    def get_profile(self, name: str) -> SyncProfile | None:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def get_enabled_profiles(self) -> list[SyncProfile]:
        return [p for p in self.profiles if p.enabled]

    def get_watch_profiles(self) -> list[SyncProfile]:
        return [p for p in self.profiles if p.enabled and p.watch_mode]


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from decoded TOML data.

    Raises:
        ConfigurationError: On problems that affect the whole configuration.
    """
    if "nas" not in data:
        raise ConfigurationError("Missing [nas] section")

    try:
        nas = NasConfig.from_dict(data["nas"])
        logging_config = LoggingConfig.from_dict(data.get("logging", {}))
        engine = EngineConfig.from_dict(data.get("engine", {}))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value in configuration: {e}") from e

    raw_profiles = data.get("sync_profiles", [])
    if not raw_profiles:
        raise ConfigurationError("At least one sync profile must be defined")

    config = AppConfig(nas=nas, profiles=[], logging=logging_config, engine=engine)
    seen: set[str] = set()

    for index, raw in enumerate(raw_profiles):
        label = str(raw.get("name") or f"<profile #{index + 1}>")
        if label in seen:
            raise ConfigurationError(f"Duplicate profile name: '{label}'")
        seen.add(label)

        try:
            profile = SyncProfile.from_dict(raw)
            config.validate_profile(profile)
        except ConfigurationError as e:
            error = e
        except (TypeError, ValueError) as e:
            error = ConfigurationError(f"Profile '{label}': invalid value: {e}")
        else:
            config.profiles.append(profile)
            continue

        if raw.get("enabled", True) is False:
            # Disabled profiles never run, so their errors never fail a sync
            logger.warning("Ignoring invalid disabled profile %s: %s", label, error)
            continue
        logger.error("Invalid profile %s: %s", label, error)
        config.invalid_profiles[label] = error

    return config


def load_config(path: Path) -> AppConfig:
    """Load and validate a TOML configuration file.

    Args:
        path: Path to the config file.

    Returns:
        Parsed configuration.

    Raises:
        ConfigurationError: If the file cannot be read or is globally invalid.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Failed to read config file: {path}") from None
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file: {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

    return parse_config(data)
