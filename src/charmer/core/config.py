"""Configuration models for charmer.

Pydantic models for the optional ``charmer.yaml`` file.  Every field has a
default, so an empty or missing file yields a working configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from charmer.core.exceptions import ConfigError


class PollingConfig(BaseModel):
    """Cadences and windows for the scheduler pollers."""

    enabled: bool = Field(default=True, description="Query the scheduler at all")
    active_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between live-queue queries (squeue / bjobs)",
    )
    history_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between accounting queries (sacct / bhist)",
    )
    history_hours: int = Field(
        default=24,
        ge=1,
        le=720,
        description="Trailing window for accounting queries",
    )
    run_uuid: str | None = Field(
        default=None,
        description="Restrict queries to jobs whose name is this run UUID",
    )
    max_failure_analyses: int = Field(
        default=5,
        ge=0,
        description="Failed jobs to analyze after each accounting merge",
    )
    max_usage_queries: int = Field(
        default=10,
        ge=0,
        description="Finished SLURM jobs to query for peak memory per accounting tick",
    )
    command_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Give up on a scheduler command after this long",
    )


class WatcherConfig(BaseModel):
    """Filesystem change notification for the metadata directory."""

    enabled: bool = Field(default=True, description="Watch for metadata changes")
    debounce_ms: int = Field(
        default=500,
        ge=0,
        description="Coalesce events for the same path within this window",
    )
    rescan_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Full metadata rescan period (safety net for missed events)",
    )


class LogConfig(BaseModel):
    """Structured logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="console for humans on stderr, json for one object per line, "
        "both for console to stderr and JSON to file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Maximum log file size before rotation (MB)",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of rotated log files to keep",
    )
    include_timestamps: bool = Field(
        default=True,
        description="Include ISO8601 UTC timestamps in log entries",
    )

    @model_validator(mode="after")
    def _both_needs_file(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("logging.file_path is required when logging.format is 'both'")
        return self


class CharmerConfig(BaseModel):
    """Complete monitor configuration."""

    working_directory: Path = Field(
        default=Path("."),
        description="Directory the Snakemake pipeline runs in",
    )
    scheduler: Literal["auto", "slurm", "lsf", "none"] = Field(
        default="auto",
        description="Scheduler to poll; auto tries squeue then bjobs",
    )
    log_refresh_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between re-reads of the main Snakemake log",
    )
    polling: PollingConfig = Field(default_factory=PollingConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> CharmerConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> CharmerConfig:
        """Load configuration from a YAML string."""
        return cls.model_validate(yaml.safe_load(yaml_str) or {})


def load_config(path: Path | None) -> CharmerConfig:
    """Load configuration, falling back to defaults when ``path`` is None.

    Raises:
        ConfigError: If the file is missing, not YAML, or fails validation.
    """
    if path is None:
        return CharmerConfig()
    try:
        return CharmerConfig.from_yaml(path)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}:\n{e}") from e


__all__ = [
    "CharmerConfig",
    "LogConfig",
    "PollingConfig",
    "WatcherConfig",
    "load_config",
]
