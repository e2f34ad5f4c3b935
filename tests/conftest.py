"""Pytest fixtures for charmer tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog, root handlers and CLI option state around each test."""
    import charmer.cli.helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def workflow_dir(tmp_path: Path) -> Path:
    """A working directory with an empty ``.snakemake`` tree."""
    workdir = tmp_path / "pipeline"
    (workdir / ".snakemake" / "metadata").mkdir(parents=True)
    (workdir / ".snakemake" / "log").mkdir(parents=True)
    return workdir
