"""Tests for the rsync transfer invoker."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from nassync.core.config import NasConfig
from nassync.core.errors import ConfigurationError, TransferError, TransferErrorKind
from nassync.core.process import CommandResult
from nassync.core.types import SyncMode
from nassync.sync.transfer import (
    TransferInvoker,
    TransferPlan,
    classify_transfer_failure,
    parse_rsync_stats,
)

if TYPE_CHECKING:
    from conftest import FakeRunner

KEY_NAS = NasConfig(host="nas", username="admin", key_path=Path("/keys/id"), port=2222)
PASSWORD_NAS = NasConfig(host="nas", username="admin", password="hunter2")


def _plan(mode: SyncMode = SyncMode.MIRROR, **kwargs: object) -> TransferPlan:
    values: dict[str, object] = {"source": "/data/docs", "destination": "/mnt/nas/docs", "mode": mode}
    values.update(kwargs)
    return TransferPlan(**values)  # type: ignore[arg-type]


class TestBuildCommand:
    """Tests for TransferInvoker.build_command."""

    @pytest.mark.parametrize(
        ("mode", "flags"),
        [
            (SyncMode.MIRROR, ["--delete"]),
            (SyncMode.ONE_WAY, []),
            (SyncMode.INCREMENTAL, ["--update"]),
            (SyncMode.BACKUP, ["--backup", "--backup-dir=.backup"]),
        ],
    )
    def test_mode_flags(self, mode: SyncMode, flags: list[str]) -> None:
        """Each mode should add its rsync flags."""
        args, env = TransferInvoker(KEY_NAS).build_command(_plan(mode))

        assert args[:4] == ["rsync", "-a", "-z", "--stats"]
        for flag in flags:
            assert flag in args
        assert env is None
        if mode is not SyncMode.MIRROR:
            assert "--delete" not in args

    def test_trailing_slash_and_destination(self) -> None:
        """The source should get a trailing slash, the destination kept as is."""
        args, _ = TransferInvoker(KEY_NAS).build_command(_plan())
        assert args[-2:] == ["/data/docs/", "/mnt/nas/docs"]

    def test_existing_trailing_slash_kept(self) -> None:
        """A source ending with a slash should not get a second one."""
        args, _ = TransferInvoker(KEY_NAS).build_command(_plan(source="/data/docs/"))
        assert args[-2] == "/data/docs/"

    def test_excludes_and_dry_run(self) -> None:
        """Exclusions and dry runs should map to rsync options."""
        plan = _plan(exclude=(".git", "*.tmp"), dry_run=True)
        args, _ = TransferInvoker(KEY_NAS).build_command(plan)
        assert "--dry-run" in args
        assert "--exclude=.git" in args
        assert "--exclude=*.tmp" in args

    def test_ssh_with_key(self) -> None:
        """Remote plans should use ssh with the port and key."""
        plan = _plan(destination="admin@nas:/volume1/docs", remote=True)
        args, env = TransferInvoker(KEY_NAS).build_command(plan)

        index = args.index("-e")
        assert args[index + 1] == "ssh -p 2222 -i /keys/id"
        assert env is None

    def test_ssh_with_password(self) -> None:
        """Password auth should go through sshpass with the password in the environment."""
        plan = _plan(destination="admin@nas:/volume1/docs", remote=True)
        args, env = TransferInvoker(PASSWORD_NAS).build_command(plan)

        assert args[:3] == ["sshpass", "-e", "rsync"]
        assert "hunter2" not in args
        assert env is not None
        assert env["SSHPASS"] == "hunter2"

    def test_two_way_rejected(self) -> None:
        """Two-way is not a single rsync pass."""
        with pytest.raises(ConfigurationError):
            TransferInvoker(KEY_NAS).build_command(_plan(SyncMode.TWO_WAY))


class TestRun:
    """Tests for TransferInvoker.run."""

    def test_parses_stats(self, fake_runner: FakeRunner) -> None:
        """A successful run should report the parsed counters."""
        stats = TransferInvoker(KEY_NAS, runner=fake_runner).run(_plan())
        assert stats.files_transferred == 3
        assert stats.bytes_transferred == 1_048_576
        assert fake_runner.commands("rsync")

    def test_failure_classified(self, fake_runner: FakeRunner) -> None:
        """A failed run should raise a classified TransferError."""
        fake_runner.rsync_results.append(
            CommandResult(255, stderr="ssh: connect to host nas port 22: Connection refused")
        )
        with pytest.raises(TransferError) as exc_info:
            TransferInvoker(KEY_NAS, runner=fake_runner).run(_plan())

        assert exc_info.value.kind is TransferErrorKind.TRANSIENT
        assert exc_info.value.exit_code == 255
        assert "Connection refused" in exc_info.value.stderr

    def test_timeout_is_transient(self) -> None:
        """A timed-out transfer should be a transient failure."""

        def runner(
            args: Sequence[str],
            timeout: float | None = None,
            env: Mapping[str, str] | None = None,
        ) -> CommandResult:
            raise subprocess.TimeoutExpired(list(args), timeout or 0)

        with pytest.raises(TransferError, match="timed out after 30s") as exc_info:
            TransferInvoker(KEY_NAS, runner=runner, timeout=30.0).run(_plan())
        assert exc_info.value.retryable

    def test_missing_binary(self) -> None:
        """An rsync that cannot be started should be a plain failure."""

        def runner(
            args: Sequence[str],
            timeout: float | None = None,
            env: Mapping[str, str] | None = None,
        ) -> CommandResult:
            raise FileNotFoundError("rsync")

        with pytest.raises(TransferError) as exc_info:
            TransferInvoker(KEY_NAS, runner=runner).run(_plan())
        assert exc_info.value.kind is TransferErrorKind.FAILED


class TestParsing:
    """Tests for stats parsing and failure classification."""

    def test_parse_rsync_stats(self) -> None:
        """Should read files and bytes with thousands separators."""
        output = (
            "Number of regular files transferred: 1,234\n"
            "Total transferred file size: 5,242,880 bytes\n"
        )
        assert parse_rsync_stats(output) == (1234, 5_242_880)

    def test_parse_missing_stats(self) -> None:
        """Absent counters should read as zero."""
        assert parse_rsync_stats("sending incremental file list\n") == (0, 0)

    @pytest.mark.parametrize(
        ("code", "stderr", "kind"),
        [
            (255, "Permission denied (publickey,password).", TransferErrorKind.AUTHENTICATION),
            (255, "Host key verification failed.", TransferErrorKind.AUTHENTICATION),
            (30, "timeout in data send/receive", TransferErrorKind.TRANSIENT),
            (12, "", TransferErrorKind.TRANSIENT),
            (255, "connect to host nas: No route to host", TransferErrorKind.TRANSIENT),
            (1, "syntax or usage error", TransferErrorKind.PROTOCOL),
            (23, "some files could not be transferred", TransferErrorKind.FAILED),
        ],
    )
    def test_classify(self, code: int, stderr: str, kind: TransferErrorKind) -> None:
        """Failures should map to retry-relevant kinds."""
        assert classify_transfer_failure(code, stderr) is kind
