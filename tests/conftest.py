"""Shared pytest fixtures.

External utilities (mount, umount, rsync) are never executed: components
receive a FakeRunner that records every command and simulates the
kernel mount table in a temporary file.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from nassync.core.config import (
    AppConfig,
    EngineConfig,
    LoggingConfig,
    MountConfig,
    NasConfig,
    SyncProfile,
)
from nassync.core.process import CommandResult
from nassync.core.types import ConflictStrategy, SyncMode

SHARE = "//nas.local/backups"

RSYNC_STATS = """\
Number of files: 12 (reg: 10, dir: 2)
Number of created files: 3
Number of regular files transferred: 3
Total file size: 52,428,800 bytes
Total transferred file size: 1,048,576 bytes
"""


class FakeRunner:
    """Records commands and simulates mount, umount and rsync."""

    def __init__(self, mounts_table: Path) -> None:
        self.mounts_table = mounts_table
        self.calls: list[list[str]] = []
        self.envs: list[Mapping[str, str] | None] = []
        self.mount_results: list[CommandResult] = []
        self.umount_results: list[CommandResult] = []
        self.rsync_results: list[CommandResult] = []
        self.default_rsync = CommandResult(0, stdout=RSYNC_STATS)
        self.on_rsync: Callable[[list[str]], None] | None = None

    def __call__(
        self,
        args: Sequence[str],
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        self.envs.append(env)
        command = args[0]

        if command == "mount":
            result = self.mount_results.pop(0) if self.mount_results else CommandResult(0)
            if result.ok:
                self.add_mount(args[3], Path(args[4]))
            return result

        if command == "umount":
            result = self.umount_results.pop(0) if self.umount_results else CommandResult(0)
            if result.ok:
                self.remove_mount(Path(args[-1]))
            return result

        if command in ("rsync", "sshpass"):
            if self.on_rsync is not None:
                self.on_rsync(args)
            return self.rsync_results.pop(0) if self.rsync_results else self.default_rsync

        return CommandResult(0)

    def add_mount(self, share: str, mount_point: Path) -> None:
        with open(self.mounts_table, "a", encoding="utf-8") as f:
            f.write(f"{share} {mount_point} cifs rw,relatime 0 0\n")

    def remove_mount(self, mount_point: Path) -> None:
        lines = self.mounts_table.read_text(encoding="utf-8").splitlines(keepends=True)
        kept = [line for line in lines if line.split()[1] != str(mount_point)]
        self.mounts_table.write_text("".join(kept), encoding="utf-8")

    def commands(self, name: str) -> list[list[str]]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def mounts_table(tmp_path: Path) -> Path:
    """Create an empty simulated kernel mount table."""
    table = tmp_path / "mounts"
    table.write_text("proc /proc proc rw 0 0\n", encoding="utf-8")
    return table


@pytest.fixture
def fake_runner(mounts_table: Path) -> FakeRunner:
    """Create a fake command runner bound to the simulated mount table."""
    return FakeRunner(mounts_table)


@pytest.fixture
def mount_config(tmp_path: Path) -> MountConfig:
    """Create a mount config with the mount point under tmp_path."""
    return MountConfig(
        share_path=SHARE,
        mount_point=tmp_path / "mnt",
        username="admin",
        password="s3cret",
    )


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Create an engine config with fast retries and private dirs in tmp_path."""
    return EngineConfig(
        state_db=tmp_path / "state.db",
        credentials_dir=tmp_path / "credentials",
        transfer_retry_backoff=0.01,
        mount_retry_attempts=3,
        mount_retry_backoff=0.01,
        health_check_interval=60.0,
        shutdown_grace=5.0,
    )


@pytest.fixture
def local_dir(tmp_path: Path) -> Path:
    """Create a local profile root."""
    path = tmp_path / "local"
    path.mkdir()
    return path


@pytest.fixture
def make_profile(local_dir: Path) -> Callable[..., SyncProfile]:
    """Factory for profiles rooted at local_dir."""

    def _make(**overrides: Any) -> SyncProfile:
        values: dict[str, Any] = {
            "name": "Docs",
            "local_path": local_dir,
            "remote_path": "docs",
            "sync_type": SyncMode.MIRROR,
            "conflict_resolution": ConflictStrategy.SKIP,
        }
        values.update(overrides)
        return SyncProfile(**values)

    return _make


@pytest.fixture
def make_config(
    mount_config: MountConfig, engine_config: EngineConfig
) -> Callable[..., AppConfig]:
    """Factory for an AppConfig with an ssh key and an SMB mount."""

    def _make(profiles: list[SyncProfile], smb: MountConfig | None = mount_config) -> AppConfig:
        nas = NasConfig(
            host="nas.local",
            username="admin",
            key_path=Path("/home/admin/.ssh/id_ed25519"),
            smb=smb,
        )
        return AppConfig(
            nas=nas,
            profiles=profiles,
            logging=LoggingConfig(console_output=True),
            engine=engine_config,
        )

    return _make
