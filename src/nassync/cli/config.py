"""Configuration utilities for the nassync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

from pathlib import Path

import click

from nassync.core.config import AppConfig, load_config
from nassync.core.errors import ConfigurationError
from nassync.core.logs import setup_logging


def load_app_config(config_path: Path, verbose: bool = False) -> AppConfig:
    """Load the configuration file and set up logging from it.

    Raises:
        click.ClickException: If the configuration is invalid.
    """
    try:
        config = load_config(config_path)
        setup_logging(config.logging, verbose=verbose)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


def context_config(ctx: click.Context) -> AppConfig:
    """Load the configuration selected by the group options."""
    obj = ctx.find_root().obj or {}
    return load_app_config(obj["config_path"], obj.get("verbose", False))
