"""Structured logging for charmer.

charmer logs through structlog on top of the stdlib ``logging`` module.  The
terminal UI owns stdout while ``charmer watch`` is running, so the console
renderer writes to stderr and long-running sessions are expected to log to a
rotating JSON file instead.

Example usage:
    from charmer.core.logging import configure_logging, get_logger

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("polling")
    logger.info("polling.started", scheduler="slurm")

    run_logger = logger.bind(run_uuid="a1b2c3")
    run_logger.debug("polling.active_merged", records=12)
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Keys whose values never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})

_current_log_path: Path | None = None


def get_current_log_path() -> Path | None:
    """Return the log file configured by the last ``configure_logging`` call."""
    return _current_log_path


def _redact(key: str, value: Any) -> Any:
    key_lower = key.lower()
    if any(pattern in key_lower for pattern in SENSITIVE_PATTERNS):
        return "[REDACTED]"
    return value


def _redact_sensitive(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that replaces sensitive values with ``[REDACTED]``."""
    redacted: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            redacted[key] = {k: _redact(k, v) for k, v in value.items()}
        else:
            redacted[key] = _redact(key, value)
    return redacted


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


class CharmerLogger:
    """Component-bound logger wrapper around structlog.

    The underlying structlog logger is fetched on every call, so loggers
    created at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    @property
    def component(self) -> str:
        return self._component

    def bind(self, **context: Any) -> CharmerLogger:
        """Return a new logger with extra context bound."""
        new_logger = CharmerLogger.__new__(CharmerLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._get_logger().exception(event, **kw)


def _build_processors(include_timestamps: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _redact_sensitive,
    ]
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ])
    return processors


def _formatter(renderer: Processor) -> logging.Formatter:
    # Each handler renders the shared event dict its own way
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=[structlog.stdlib.add_log_level],
    )


def _console_renderer() -> Processor:
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console", "both"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Call once at startup, before the monitor starts its background tasks.

    Args:
        level: Minimum log level to capture.
        format: ``console`` renders for humans on stderr, ``json`` emits one
            JSON object per line (to ``file_path`` if given, else stdout),
            ``both`` sends console output to stderr and JSON to ``file_path``.
        file_path: Log file location; required when ``format="both"``.
        max_file_size_mb: Rotate the log file once it reaches this size.
        backup_count: Number of rotated files to keep.
        include_timestamps: Add an ISO8601 timestamp to every entry.

    Raises:
        ValueError: If ``format="both"`` and no ``file_path`` is given.
    """
    global _current_log_path

    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(_formatter(_console_renderer()))
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            _current_log_path = file_path
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
            handlers.append(file_handler)
        else:
            json_handler = logging.StreamHandler(sys.stdout)
            json_handler.setLevel(log_level)
            json_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # cache_logger_on_first_use=False: module-level loggers must see this config
    structlog.configure(
        processors=_build_processors(include_timestamps),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> CharmerLogger:
    """Get a logger bound to ``component``.

    Example:
        logger = get_logger("watcher")
        logger.info("watcher.started", path="/data/run/.snakemake/metadata")
    """
    return CharmerLogger(component, **initial_context)


__all__ = [
    "CharmerLogger",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_current_log_path",
    "get_logger",
]
