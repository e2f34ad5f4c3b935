"""Two-cadence scheduler polling.

``PollingService`` runs two independent background tasks against one
``StateStore``:

- active: the live queue (squeue / bjobs), every ``active_interval_seconds``
- history: accounting (sacct / bhist) over ``history_hours``, every
  ``history_interval_seconds``, followed by failure and usage enrichment

Each tick queries first and only then takes the state lock to merge.  A
failed query is logged and the tick skipped; the loop keeps its cadence.
A hung tool stalls only its own loop.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from charmer.core.config import PollingConfig
from charmer.core.exceptions import CharmerError, SchedulerQueryError
from charmer.core.logging import get_logger
from charmer.core.task_utils import log_task_exception
from charmer.failure.analyze import analyze_failure
from charmer.failure.models import FailureAnalysis
from charmer.schedulers import lsf, slurm
from charmer.state.models import ResourceUsage
from charmer.state.records import SchedulerRecord, SchedulerType
from charmer.state.store import StateStore

_logger = get_logger("polling")

LiveQuery = Callable[[str | None], Awaitable[list[SchedulerRecord]]]
HistoryQuery = Callable[[int, str | None], Awaitable[list[SchedulerRecord]]]
FailureQuery = Callable[[str], Awaitable[FailureAnalysis]]
UsageQuery = Callable[[str], Awaitable[ResourceUsage | None]]


@dataclass
class SchedulerBackend:
    """The scheduler queries the poller needs, bound to one scheduler.

    ``query_usage`` is only available where accounting reports per-job peak
    memory separately (SLURM).
    """

    scheduler: SchedulerType
    query_live: LiveQuery
    query_history: HistoryQuery
    analyze: FailureQuery
    query_usage: UsageQuery | None = None


def backend_for(scheduler: SchedulerType, timeout: float = 30.0) -> SchedulerBackend:
    if scheduler is SchedulerType.SLURM:
        live, history = slurm.query_squeue, slurm.query_sacct
    else:
        live, history = lsf.query_bjobs, lsf.query_bhist

    async def query_live(run_uuid: str | None) -> list[SchedulerRecord]:
        return await live(run_uuid, timeout=timeout)

    async def query_history(hours: int, run_uuid: str | None) -> list[SchedulerRecord]:
        return await history(hours, run_uuid, timeout=timeout)

    async def analyze(job_id: str) -> FailureAnalysis:
        return await analyze_failure(scheduler, job_id, timeout=timeout)

    if scheduler is not SchedulerType.SLURM:
        return SchedulerBackend(scheduler, query_live, query_history, analyze)

    async def query_usage(job_id: str) -> ResourceUsage | None:
        return await slurm.query_resource_usage(job_id, timeout=timeout)

    return SchedulerBackend(scheduler, query_live, query_history, analyze, query_usage)


@dataclass
class PollStats:
    """Health of one polling loop."""

    ticks: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_success: float | None = None
    last_error: str | None = None
    records_merged: int = field(default=0)

    def record_success(self, merged: int) -> None:
        self.ticks += 1
        self.consecutive_failures = 0
        self.last_success = time.monotonic()
        self.last_error = None
        self.records_merged = merged

    def record_failure(self, error: str) -> None:
        self.ticks += 1
        self.failures += 1
        self.consecutive_failures += 1
        self.last_error = error


class PollingService:
    """Drives the live-queue and accounting producers into the store."""

    # Consecutive failures before the loop reports itself degraded
    DEGRADED_THRESHOLD = 5

    def __init__(
        self,
        store: StateStore,
        backend: SchedulerBackend,
        config: PollingConfig | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._config = config or PollingConfig()
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []
        self.active_stats = PollStats()
        self.history_stats = PollStats()

    @property
    def scheduler(self) -> SchedulerType:
        return self._backend.scheduler

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        loops = (
            ("poll-active", self._config.active_interval_seconds, self.poll_active),
            ("poll-history", self._config.history_interval_seconds, self.poll_history),
        )
        for name, interval, tick in loops:
            task = asyncio.create_task(self._loop(name, interval, tick), name=name)
            task.add_done_callback(self._on_loop_done)
            self._tasks.append(task)
        _logger.info(
            "polling.started",
            scheduler=self.scheduler.value,
            active_interval=self._config.active_interval_seconds,
            history_interval=self._config.history_interval_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        _logger.info("polling.stopped")

    def _on_loop_done(self, task: asyncio.Task[None]) -> None:
        log_task_exception(task, _logger, "polling.loop_died_unexpectedly")

    async def _loop(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[bool]],
    ) -> None:
        while self._running:
            try:
                await tick()
            except asyncio.CancelledError:
                break
            except Exception:
                _logger.exception("polling.tick_crashed", loop=name)
            await asyncio.sleep(interval)

    # ─── Ticks ───────────────────────────────────────────────────────

    def _failed(self, stats: PollStats, event: str, error: CharmerError) -> None:
        stats.record_failure(str(error))
        level = "error" if stats.consecutive_failures == self.DEGRADED_THRESHOLD else "warning"
        getattr(_logger, level)(
            event,
            scheduler=self.scheduler.value,
            error=str(error),
            consecutive_failures=stats.consecutive_failures,
        )

    async def poll_active(self) -> bool:
        """One live-queue tick.  Returns False if the query failed."""
        try:
            records = await self._backend.query_live(self._config.run_uuid)
        except SchedulerQueryError as e:
            self._failed(self.active_stats, "polling.active_query_failed", e)
            return False
        result = await self._store.merge_scheduler(records)
        self.active_stats.record_success(result.total)
        _logger.debug("polling.active_merged", records=result.total)
        return True

    async def poll_history(self) -> bool:
        """One accounting tick plus enrichment.  Returns False if the query failed."""
        try:
            records = await self._backend.query_history(
                self._config.history_hours, self._config.run_uuid
            )
        except SchedulerQueryError as e:
            self._failed(self.history_stats, "polling.history_query_failed", e)
            return False
        result = await self._store.merge_scheduler(records)
        self.history_stats.record_success(result.total)
        _logger.debug("polling.history_merged", records=result.total)
        await self.enrich_failures()
        await self.enrich_usage()
        return True

    async def enrich_failures(self) -> int:
        """Analyze up to ``max_failure_analyses`` unanalyzed failed jobs.

        Analyses run outside the lock and are attached in one merge.  Jobs
        whose analysis raised are counted in the store so they drop behind
        the others and are eventually left alone.
        """
        limit = self._config.max_failure_analyses
        if limit <= 0:
            return 0
        candidates = await self._store.failed_jobs_needing_analysis(limit)
        analyses: list[tuple[str, FailureAnalysis]] = []
        failed: list[str] = []
        for job in candidates:
            if job.scheduler_job_id is None:
                continue
            try:
                analysis = await self._backend.analyze(job.scheduler_job_id)
            except CharmerError as e:
                _logger.debug(
                    "polling.failure_analysis_skipped",
                    job_id=job.id,
                    scheduler_job_id=job.scheduler_job_id,
                    error=str(e),
                )
                failed.append(job.scheduler_job_id)
                continue
            analyses.append((job.id, analysis))
        if failed:
            await self._store.record_analysis_failures(failed)
        if not analyses:
            return 0
        return await self._store.attach_analyses(analyses)

    async def enrich_usage(self) -> int:
        """Fill in peak memory and CPU time for up to ``max_usage_queries`` finished jobs."""
        query = self._backend.query_usage
        limit = self._config.max_usage_queries
        if query is None or limit <= 0:
            return 0
        candidates = await self._store.jobs_needing_usage(limit)
        usages: list[tuple[str, ResourceUsage]] = []
        misses: list[str] = []
        for job in candidates:
            if job.scheduler_job_id is None:
                continue
            try:
                usage = await query(job.scheduler_job_id)
            except CharmerError as e:
                _logger.debug(
                    "polling.usage_query_skipped",
                    job_id=job.id,
                    scheduler_job_id=job.scheduler_job_id,
                    error=str(e),
                )
                usage = None
            if usage is None or usage.max_rss_mb is None:
                misses.append(job.scheduler_job_id)
            if usage is not None:
                usages.append((job.id, usage))
        if misses:
            await self._store.record_usage_misses(misses)
        if not usages:
            return 0
        return await self._store.attach_usage(usages)


async def create_polling_service(
    store: StateStore,
    config: PollingConfig,
    scheduler: SchedulerType | None,
) -> PollingService | None:
    """Build a poller for ``scheduler``, or return None when polling is off."""
    if not config.enabled or scheduler is None:
        _logger.info("polling.disabled", scheduler=scheduler.value if scheduler else None)
        return None
    backend = backend_for(scheduler, timeout=config.command_timeout_seconds)
    return PollingService(store, backend, config)


__all__ = [
    "PollStats",
    "PollingService",
    "SchedulerBackend",
    "backend_for",
    "create_polling_service",
]
