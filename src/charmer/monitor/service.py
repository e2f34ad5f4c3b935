"""Monitor wiring: one store, its producers, and their lifecycles.

``MonitorService`` owns the ``StateStore`` and starts every producer that
feeds it: the change notifier (metadata), the scheduler poller and the
main-log refresher.  Renderers only ever call ``snapshot()``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from charmer.core.config import CharmerConfig
from charmer.core.logging import get_logger
from charmer.core.task_utils import log_task_exception
from charmer.monitor.polling import PollingService, create_polling_service
from charmer.monitor.watcher import ChangeNotifier
from charmer.schedulers.base import detect_scheduler
from charmer.state.models import PipelineState
from charmer.state.records import SchedulerType
from charmer.state.store import StateStore
from charmer.workflow.main_log import read_latest_log
from charmer.workflow.metadata import MetadataScanner

_logger = get_logger("monitor")


@dataclass
class MonitorHealth:
    """Producer health shown alongside a snapshot."""

    scheduler: SchedulerType | None
    watching: bool
    active_error: str | None = None
    history_error: str | None = None


async def resolve_scheduler(setting: str, timeout: float = 5.0) -> SchedulerType | None:
    """Map the ``scheduler`` config value to a scheduler, probing on ``auto``."""
    if setting == "none":
        return None
    if setting == "auto":
        return await detect_scheduler(timeout=timeout)
    return SchedulerType(setting)


class MonitorService:
    """Runs every producer against one shared state."""

    def __init__(self, config: CharmerConfig) -> None:
        self.config = config
        self.working_directory = config.working_directory.resolve()
        self.store = StateStore(self.working_directory, run_uuid=config.polling.run_uuid)
        self.scanner = MetadataScanner(self.working_directory)
        self.notifier = ChangeNotifier(self.store, self.scanner, config.watcher)
        self.scheduler: SchedulerType | None = None
        self.polling: PollingService | None = None
        self._log_task: asyncio.Task[None] | None = None
        self._running = False
        self._resolved = False

    @property
    def running(self) -> bool:
        return self._running

    async def _resolve(self) -> None:
        if self._resolved:
            return
        self.scheduler = await resolve_scheduler(self.config.scheduler)
        self.polling = await create_polling_service(
            self.store, self.config.polling, self.scheduler
        )
        self._resolved = True

    async def snapshot(self) -> PipelineState:
        return await self.store.snapshot()

    def health(self) -> MonitorHealth:
        health = MonitorHealth(scheduler=self.scheduler, watching=self.notifier.watching)
        if self.polling is not None:
            health.active_error = self.polling.active_stats.last_error
            health.history_error = self.polling.history_stats.last_error
        return health

    async def refresh_log(self) -> bool:
        """Re-parse the newest main log into the state.  Returns False if there is none."""
        info = await asyncio.to_thread(read_latest_log, self.working_directory)
        if info is None:
            return False
        await self.store.apply_log(info)
        return True

    async def refresh_once(self) -> PipelineState:
        """Run every producer once, in order, and return the resulting snapshot."""
        await self._resolve()
        await self.notifier.rescan()
        if self.polling is not None:
            await self.polling.poll_active()
            await self.polling.poll_history()
        await self.refresh_log()
        return await self.snapshot()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self._resolve()
        await self.notifier.start()
        if self.polling is not None:
            await self.polling.start()
        self._log_task = asyncio.create_task(self._log_loop(), name="log-refresh")
        self._log_task.add_done_callback(self._on_log_done)
        _logger.info(
            "monitor.started",
            working_directory=str(self.working_directory),
            scheduler=self.scheduler.value if self.scheduler else None,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._log_task is not None:
            self._log_task.cancel()
            try:
                await self._log_task
            except asyncio.CancelledError:
                pass
            self._log_task = None
        if self.polling is not None:
            await self.polling.stop()
        await self.notifier.stop()
        _logger.info("monitor.stopped")

    def _on_log_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "monitor.log_loop_died_unexpectedly")

    async def _log_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_log()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.exception("monitor.log_refresh_failed")
            await asyncio.sleep(self.config.log_refresh_interval_seconds)


__all__ = ["MonitorHealth", "MonitorService", "resolve_scheduler"]
