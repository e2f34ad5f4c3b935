"""Shared state and utilities for charmer CLI commands.

- global option state (config path, logging overrides)
- config loading with CLI overrides applied
- logging setup, done once per process
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from charmer.core.config import CharmerConfig, load_config
from charmer.core.exceptions import ConfigError
from charmer.core.logging import configure_logging, get_logger

_logger = get_logger("cli")

# Exit code for unreadable or invalid configuration
CONFIG_EXIT_CODE = 2


class ErrorMessages:
    """User-facing error strings."""

    JOB_NOT_FOUND = "Job not found"
    CONFIG_LOAD_ERROR = "Error loading config"
    DIRECTORY_NOT_FOUND = "Working directory not found"
    NO_SCHEDULER = "No scheduler available"


# =============================================================================
# Global option state
# =============================================================================


@dataclass
class CliOptions:
    """Values of the global options, set by the app callback."""

    config_path: Path | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    log_format: Literal["json", "console", "both"] | None = None
    log_file: Path | None = None
    logging_configured: bool = False


_options = CliOptions()


def get_options() -> CliOptions:
    return _options


def reset_cli_state() -> None:
    """Forget global options and logging setup (for tests)."""
    global _options
    _options = CliOptions()


# =============================================================================
# Config and logging
# =============================================================================


def load_cli_config(
    console: Console,
    *,
    directory: Path | None = None,
    scheduler: str | None = None,
) -> CharmerConfig:
    """Load the config file (if any) and apply command-line overrides.

    Raises:
        typer.Exit: With code 2 if the config cannot be loaded.
    """
    try:
        config = load_config(_options.config_path)
    except ConfigError as e:
        console.print(f"[red]{ErrorMessages.CONFIG_LOAD_ERROR}:[/red] {e}")
        raise typer.Exit(CONFIG_EXIT_CODE) from None

    updates: dict[str, object] = {}
    if directory is not None:
        updates["working_directory"] = directory
    if scheduler is not None:
        updates["scheduler"] = scheduler
    log_updates: dict[str, object] = {}
    if _options.log_level is not None:
        log_updates["level"] = _options.log_level
    if _options.log_format is not None:
        log_updates["format"] = _options.log_format
    if _options.log_file is not None:
        log_updates["file_path"] = _options.log_file
    if log_updates:
        updates["logging"] = config.logging.model_copy(update=log_updates)
    if updates:
        config = config.model_copy(update=updates)

    if not config.working_directory.is_dir():
        console.print(
            f"[red]{ErrorMessages.DIRECTORY_NOT_FOUND}:[/red] {config.working_directory}"
        )
        raise typer.Exit(1)
    return config


def configure_global_logging(console: Console, config: CharmerConfig) -> None:
    """Configure logging from the effective config.  Only the first call has effect.

    Raises:
        typer.Exit: With code 2 if the logging settings are inconsistent.
    """
    if _options.logging_configured:
        return
    log = config.logging
    try:
        configure_logging(
            level=log.level,
            format=log.format,
            file_path=log.file_path,
            max_file_size_mb=log.max_file_size_mb,
            backup_count=log.backup_count,
            include_timestamps=log.include_timestamps,
        )
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(CONFIG_EXIT_CODE) from None
    _options.logging_configured = True
    _logger.debug("cli.logging_configured", level=log.level, format=log.format)


def prepare(
    console: Console,
    *,
    directory: Path | None = None,
    scheduler: str | None = None,
) -> CharmerConfig:
    """Load config and set up logging; the common first step of every command."""
    config = load_cli_config(console, directory=directory, scheduler=scheduler)
    configure_global_logging(console, config)
    return config


__all__ = [
    "CONFIG_EXIT_CODE",
    "CliOptions",
    "ErrorMessages",
    "configure_global_logging",
    "get_options",
    "load_cli_config",
    "prepare",
    "reset_cli_state",
]
