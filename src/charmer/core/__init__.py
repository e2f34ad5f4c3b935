"""Core infrastructure: logging, configuration, exceptions."""

from charmer.core.config import CharmerConfig, LogConfig, PollingConfig, WatcherConfig
from charmer.core.exceptions import CharmerError
from charmer.core.logging import configure_logging, get_logger

__all__ = [
    "CharmerConfig",
    "CharmerError",
    "LogConfig",
    "PollingConfig",
    "WatcherConfig",
    "configure_logging",
    "get_logger",
]
