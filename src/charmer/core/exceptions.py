"""Exception hierarchy for charmer.

Every charmer-specific exception inherits from CharmerError so callers can
catch broadly or narrowly.  The hierarchy is flat: each subclass names one
failure category and the layer that is expected to handle it.
"""

from __future__ import annotations


class CharmerError(Exception):
    """Base exception for all charmer errors."""


class ConfigError(CharmerError):
    """Raised when a configuration file cannot be read or validated."""


class SchedulerQueryError(CharmerError):
    """Raised when a scheduler client tool cannot be run or exits non-zero.

    Pollers log this and skip the tick; shared state is not touched.
    """

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message


class RecordParseError(CharmerError):
    """Raised when a single line of tool output cannot be turned into a record.

    Producers drop the offending line with a warning and keep the rest.
    """


class JobNotFoundError(CharmerError):
    """Raised when the scheduler has no accounting record for a job."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class FailureAnalysisError(CharmerError):
    """Raised when failure diagnostics exist but cannot be interpreted."""


class WatcherSetupError(CharmerError):
    """Raised when the filesystem watch cannot be established.

    The change notifier falls back to rescan-only operation.
    """


__all__ = [
    "CharmerError",
    "ConfigError",
    "FailureAnalysisError",
    "JobNotFoundError",
    "RecordParseError",
    "SchedulerQueryError",
    "WatcherSetupError",
]
