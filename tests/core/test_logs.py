"""Tests for logging setup."""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from nassync.core.config import LoggingConfig
from nassync.core.errors import ConfigurationError
from nassync.core.logs import parse_log_level, setup_logging


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Restore the nassync logger after each test."""
    logger = logging.getLogger("nassync")
    level = logger.level
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)


class TestParseLogLevel:
    """Tests for parse_log_level."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("trace", logging.DEBUG),
            ("debug", logging.DEBUG),
            ("INFO", logging.INFO),
            ("warn", logging.WARNING),
            ("error", logging.ERROR),
        ],
    )
    def test_known_levels(self, name: str, expected: int) -> None:
        """Should map level names case-insensitively."""
        assert parse_log_level(name) == expected

    def test_unknown_level(self) -> None:
        """Should reject unknown names."""
        with pytest.raises(ConfigurationError, match="Invalid log level"):
            parse_log_level("loud")


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_handler(self) -> None:
        """Console output should add a stream handler at the configured level."""
        logger = setup_logging(LoggingConfig(log_level="warn"))
        assert logger.level == logging.WARNING
        assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)

    def test_verbose_forces_debug(self) -> None:
        """--verbose should override the configured level."""
        logger = setup_logging(LoggingConfig(log_level="error"), verbose=True)
        assert logger.level == logging.DEBUG

    def test_rotating_file_handler(self, tmp_path: Path) -> None:
        """File output should rotate by size when enabled."""
        config = LoggingConfig(
            log_file=tmp_path / "logs" / "nassync.log",
            console_output=False,
            file_output=True,
            max_file_size_mb=1,
            max_files=3,
        )
        logger = setup_logging(config)

        handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].maxBytes == 1024 * 1024
        assert handlers[0].backupCount == 3

        logging.getLogger("nassync.test").info("hello")
        handlers[0].flush()
        assert "hello" in (tmp_path / "logs" / "nassync.log").read_text()

    def test_plain_file_handler_without_rotation(self, tmp_path: Path) -> None:
        """Disabling rotation should use a plain file handler."""
        config = LoggingConfig(
            log_file=tmp_path / "nassync.log",
            console_output=False,
            file_output=True,
            rotate_enabled=False,
        )
        logger = setup_logging(config)
        assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
        assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)

    def test_compressed_rotation(self, tmp_path: Path) -> None:
        """Rotated files should be gzip-compressed when configured."""
        config = LoggingConfig(
            log_file=tmp_path / "nassync.log",
            console_output=False,
            file_output=True,
            compress_rotated=True,
        )
        logger = setup_logging(config)
        handler = next(h for h in logger.handlers if isinstance(h, RotatingFileHandler))

        logging.getLogger("nassync.test").info("before rotation")
        handler.doRollover()

        rotated = tmp_path / "nassync.log.1.gz"
        assert rotated.exists()
        with gzip.open(rotated, "rt") as f:
            assert "before rotation" in f.read()

    def test_no_outputs_rejected(self) -> None:
        """At least one output must be enabled."""
        with pytest.raises(ConfigurationError, match="console_output or file_output"):
            setup_logging(LoggingConfig(console_output=False, file_output=False))

    def test_disabled_logging(self) -> None:
        """Disabled logging should install only a NullHandler."""
        logger = setup_logging(LoggingConfig(enabled=False))
        assert all(isinstance(h, logging.NullHandler) for h in logger.handlers)
