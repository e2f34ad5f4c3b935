"""Helpers for asyncio.Task lifecycle.

``log_task_exception`` is called from done-callbacks on the monitor's
background tasks so a poller or watcher that dies is reported instead of
disappearing silently.
"""

from __future__ import annotations

import asyncio
from typing import Any


def log_task_exception(
    task: asyncio.Task[Any],
    logger: Any,
    event: str,
    *,
    level: str = "error",
) -> BaseException | None:
    """Log the exception of a finished task, if it has one.

    Args:
        task: The completed task to inspect.
        logger: A structlog-style logger.
        event: Event name to log under (e.g. ``"polling.task_died"``).
        level: Logger method name to use.

    Returns:
        The exception, or ``None`` if the task finished normally or was cancelled.
    """
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        log_fn = getattr(logger, level, logger.error)
        log_fn(event, error=str(exc), task_name=task.get_name())
    return exc


__all__ = ["log_task_exception"]
