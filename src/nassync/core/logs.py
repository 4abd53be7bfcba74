"""Logging setup for nassync.

Configures the ``nassync`` logger with console and/or file output. File
output can rotate by size and gzip the rotated files.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler

from nassync.core.config import LoggingConfig
from nassync.core.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_log_level(level: str) -> int:
    """Map a configured level name to a logging level.

    Raises:
        ConfigurationError: If the name is unknown.
    """
    try:
        return LOG_LEVELS[level.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Invalid log level: {level}. Valid levels: trace, debug, info, warn, error"
        ) from None


def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


def _build_file_handler(config: LoggingConfig) -> logging.Handler:
    config.log_file.parent.mkdir(parents=True, exist_ok=True)

    if not config.rotate_enabled:
        return logging.FileHandler(config.log_file, encoding="utf-8")

    handler = RotatingFileHandler(
        config.log_file,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.max_files,
        encoding="utf-8",
    )
    if config.compress_rotated:
        handler.namer = _gzip_namer
        handler.rotator = _gzip_rotator
    return handler


def setup_logging(config: LoggingConfig, verbose: bool = False) -> logging.Logger:
    """Configure the nassync logger.

    Args:
        config: Logging section of the configuration.
        verbose: Force DEBUG level regardless of the configured level.

    Returns:
        The configured ``nassync`` logger.

    Raises:
        ConfigurationError: On an invalid level or when no output is enabled.
    """
    root_logger = logging.getLogger("nassync")
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if not config.enabled:
        root_logger.addHandler(logging.NullHandler())
        return root_logger

    if not config.console_output and not config.file_output:
        raise ConfigurationError("Either console_output or file_output must be enabled")

    level = logging.DEBUG if verbose else parse_log_level(config.log_level)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if config.console_output:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

    if config.file_output:
        file_handler = _build_file_handler(config)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger
