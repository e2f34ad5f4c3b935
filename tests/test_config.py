"""Tests for charmer.core.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from charmer.core.config import (
    CharmerConfig,
    LogConfig,
    PollingConfig,
    WatcherConfig,
    load_config,
)
from charmer.core.exceptions import ConfigError


class TestDefaults:
    def test_everything_has_a_default(self):
        config = CharmerConfig()
        assert config.scheduler == "auto"
        assert config.working_directory == Path(".")
        assert config.polling.active_interval_seconds == 5.0
        assert config.polling.history_interval_seconds == 30.0
        assert config.polling.history_hours == 24
        assert config.watcher.debounce_ms == 500
        assert config.logging.level == "WARNING"

    def test_load_without_path(self):
        assert load_config(None) == CharmerConfig()


class TestValidation:
    """Field constraints."""

    def test_intervals_must_be_positive(self):
        with pytest.raises(ValidationError):
            PollingConfig(active_interval_seconds=0)
        with pytest.raises(ValidationError):
            WatcherConfig(rescan_interval_seconds=-1)

    def test_history_window_bounds(self):
        with pytest.raises(ValidationError):
            PollingConfig(history_hours=0)
        with pytest.raises(ValidationError):
            PollingConfig(history_hours=721)

    def test_scheduler_choices(self):
        with pytest.raises(ValidationError):
            CharmerConfig(scheduler="pbs")

    def test_both_format_needs_file(self, tmp_path: Path):
        with pytest.raises(ValidationError, match="file_path is required"):
            LogConfig(format="both")
        config = LogConfig(format="both", file_path=tmp_path / "charmer.log")
        assert config.file_path == tmp_path / "charmer.log"


class TestYaml:
    def test_from_yaml_string(self):
        config = CharmerConfig.from_yaml_string(
            """
            working_directory: /data/run1
            scheduler: slurm
            polling:
              history_hours: 48
              run_uuid: 3f2a
            watcher:
              enabled: false
            """
        )
        assert config.working_directory == Path("/data/run1")
        assert config.scheduler == "slurm"
        assert config.polling.history_hours == 48
        assert config.polling.run_uuid == "3f2a"
        assert config.polling.active_interval_seconds == 5.0
        assert not config.watcher.enabled

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "charmer.yaml"
        path.write_text("")
        assert load_config(path) == CharmerConfig()

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Cannot read config"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "charmer.yaml"
        path.write_text("polling: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_invalid_values(self, tmp_path: Path):
        path = tmp_path / "charmer.yaml"
        path.write_text("polling:\n  active_interval_seconds: -5\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)
