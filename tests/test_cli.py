"""Tests for CLI commands - sync, profiles, state."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from nassync.cli import cli
from nassync.core.errors import ConfigurationError
from nassync.core.types import ConflictOutcome, ConflictStrategy
from nassync.state import SyncStateStore
from nassync.sync.types import ConflictRecord, FileMeta, SyncRunResult


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Drop handlers installed by the commands."""
    yield
    logger = logging.getLogger("nassync")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a configuration with one valid and one invalid profile."""
    local = tmp_path / "docs"
    local.mkdir()
    path = tmp_path / "config.toml"
    path.write_text(
        f"""\
[nas]
host = "nas.local"
username = "admin"
key_path = "{tmp_path / 'id_ed25519'}"

[nas.smb]
share_path = "//nas.local/backups"
mount_point = "{tmp_path / 'mnt'}"
username = "admin"
password = "secret"

[logging]
console_output = false
file_output = true
log_file = "{tmp_path / 'nassync.log'}"

[engine]
state_db = "{tmp_path / 'state.db'}"

[[sync_profiles]]
name = "Docs"
local_path = "{local}"
remote_path = "docs"
sync_type = "two-way"
conflict_resolution = "newest"
use_smb_mount = true
watch_mode = true
debounce_seconds = 3

[[sync_profiles]]
name = "Broken"
local_path = "{local}"
remote_path = "x"
sync_type = "sideways"
"""
    )
    return path


def _result(profile: str = "Docs", **kwargs: object) -> SyncRunResult:
    result = SyncRunResult.begin(profile)
    for key, value in kwargs.items():
        setattr(result, key, value)
    return result.finish()


class TestSyncCommand:
    """Tests for 'nassync sync'."""

    def test_summary(self, runner: CliRunner, config_file: Path) -> None:
        """Should print one summary per profile."""
        meta = FileMeta(mtime=1.0, size=1, fingerprint="f")
        conflict = ConflictRecord(
            path="a.txt",
            source=meta,
            dest=meta,
            strategy=ConflictStrategy.NEWEST,
            outcome=ConflictOutcome.SOURCE_WINS,
        )
        result = _result(
            files_transferred=3, bytes_transferred=2 * 1024 * 1024, conflicts=[conflict]
        )
        with patch("nassync.cli.sync.SyncOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run_once.return_value = [result]
            outcome = runner.invoke(cli, ["-c", str(config_file), "sync"])

        assert outcome.exit_code == 0, outcome.output
        assert "Sync Summary:" in outcome.output
        assert "Files transferred: 3" in outcome.output
        assert "Bytes transferred: 2.00 MB" in outcome.output
        assert "source-wins: 1" in outcome.output
        assert "Completed successfully" in outcome.output
        orchestrator_cls.return_value.run_once.assert_called_once_with(None)
        orchestrator_cls.return_value.close.assert_called_once()

    def test_failure_exit_code(self, runner: CliRunner, config_file: Path) -> None:
        """Any failed profile should make the command exit with 1."""
        failed = SyncRunResult.begin("Docs")
        failed.fail("mounting", "Permission denied", "permission-denied")
        failed.finish()
        with patch("nassync.cli.sync.SyncOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run_once.return_value = [failed, _result("Other")]
            outcome = runner.invoke(cli, ["-c", str(config_file), "sync"])

        assert outcome.exit_code == 1
        assert "Failed" in outcome.output
        assert "permission-denied" in outcome.output

    def test_profile_and_dry_run_options(self, runner: CliRunner, config_file: Path) -> None:
        """--profile and --dry-run should reach the orchestrator."""
        with patch("nassync.cli.sync.SyncOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run_once.return_value = [_result()]
            outcome = runner.invoke(
                cli, ["-c", str(config_file), "sync", "-p", "Docs", "--dry-run"]
            )

        assert outcome.exit_code == 0, outcome.output
        assert "DRY RUN MODE" in outcome.output
        assert orchestrator_cls.call_args.kwargs["dry_run"] is True
        orchestrator_cls.return_value.run_once.assert_called_once_with(["Docs"])

    def test_configuration_error(self, runner: CliRunner, config_file: Path) -> None:
        """Selection errors should be reported without a traceback."""
        with patch("nassync.cli.sync.SyncOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run_once.side_effect = ConfigurationError(
                "Profile not found: Nope"
            )
            outcome = runner.invoke(cli, ["-c", str(config_file), "sync", "-p", "Nope"])

        assert outcome.exit_code == 1
        assert "Profile not found: Nope" in outcome.output
        orchestrator_cls.return_value.close.assert_called_once()

    def test_watch(self, runner: CliRunner, config_file: Path) -> None:
        """--watch should block in watch mode with a per-cycle printer."""
        with patch("nassync.cli.sync.SyncOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.watch.return_value = [_result()]
            outcome = runner.invoke(cli, ["-c", str(config_file), "sync", "--watch"])

        assert outcome.exit_code == 0, outcome.output
        assert "Watching for changes" in outcome.output
        assert orchestrator_cls.call_args.kwargs["on_result"] is not None
        orchestrator_cls.return_value.watch.assert_called_once_with(None)

    def test_missing_config(self, runner: CliRunner, tmp_path: Path) -> None:
        """A missing config file should be a clean error."""
        outcome = runner.invoke(cli, ["-c", str(tmp_path / "none.toml"), "sync"])
        assert outcome.exit_code == 1
        assert "Failed to read config file" in outcome.output


class TestProfilesCommand:
    """Tests for 'nassync profiles'."""

    def test_lists_profiles(self, runner: CliRunner, config_file: Path) -> None:
        """Should list valid and invalid profiles."""
        outcome = runner.invoke(cli, ["-c", str(config_file), "profiles"])

        assert outcome.exit_code == 0, outcome.output
        assert "Docs [two-way] enabled" in outcome.output
        assert "watch 3s, smb, conflicts: newest" in outcome.output
        assert "Broken [invalid]" in outcome.output


class TestStateCommands:
    """Tests for 'nassync state'."""

    @pytest.fixture
    def populated(self, tmp_path: Path, config_file: Path) -> Path:
        store = SyncStateStore(tmp_path / "state.db")
        old = time.time() - 40 * 86400
        store.upsert("Docs", "old.txt", old, "a" * 64, recorded_at=old)
        store.upsert("Docs", "new.txt", time.time(), "b" * 64)
        store.close()
        return config_file

    def test_show(self, runner: CliRunner, populated: Path) -> None:
        """Should list entries with short fingerprints."""
        outcome = runner.invoke(cli, ["-c", str(populated), "state", "show", "-p", "Docs"])

        assert outcome.exit_code == 0, outcome.output
        assert "b" * 12 + "  new.txt" in outcome.output
        assert "2 entries" in outcome.output

    def test_show_empty(self, runner: CliRunner, config_file: Path) -> None:
        """An empty profile should say so."""
        outcome = runner.invoke(cli, ["-c", str(config_file), "state", "show", "-p", "Docs"])
        assert "No sync state recorded for Docs." in outcome.output

    def test_prune(self, runner: CliRunner, populated: Path, tmp_path: Path) -> None:
        """Should delete entries older than the given number of days."""
        outcome = runner.invoke(
            cli,
            ["-c", str(populated), "state", "prune", "-p", "Docs", "--older-than-days", "30"],
        )

        assert outcome.exit_code == 0, outcome.output
        assert "Removed 1 entries for Docs." in outcome.output
        store = SyncStateStore(tmp_path / "state.db")
        try:
            assert [e.path for e in store.list_entries("Docs")] == ["new.txt"]
        finally:
            store.close()

    def test_prune_rejects_negative_days(self, runner: CliRunner, config_file: Path) -> None:
        """Negative ages are a usage error."""
        outcome = runner.invoke(
            cli,
            ["-c", str(config_file), "state", "prune", "-p", "Docs", "--older-than-days", "-1"],
        )
        assert outcome.exit_code == 2


def test_main_help(runner: CliRunner) -> None:
    """The group should list its commands."""
    outcome = runner.invoke(cli, ["--help"])
    assert outcome.exit_code == 0
    for command in ("sync", "profiles", "state"):
        assert command in outcome.output
