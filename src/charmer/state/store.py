"""Owner of the one mutable ``PipelineState``.

``StateStore`` holds the state behind a single ``asyncio.Lock`` and exposes
a small set of merge entry points.  The lock is held only while an
already-computed batch is folded in; producers do their I/O before calling
in.  Readers get deep copies from ``snapshot()`` and never see the live
object.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from charmer.core.logging import get_logger
from charmer.failure.models import FailureAnalysis
from charmer.state.correlation import correlate_jobs
from charmer.state.merge import (
    MergeResult,
    apply_log_info,
    attach_failure_analyses,
    attach_resource_usage,
    merge_scheduler_records,
    merge_workflow_records,
)
from charmer.state.models import Job, JobStatus, PipelineState, ResourceUsage
from charmer.state.records import SchedulerRecord, WorkflowRecord

if TYPE_CHECKING:
    from charmer.workflow.main_log import LogInfo

_logger = get_logger("store")

# Failed enrichment attempts per scheduler job before it stops being offered
MAX_ENRICHMENT_ATTEMPTS = 3


class StateStore:
    """Single-writer access to the pipeline state."""

    def __init__(self, working_directory: Path, *, run_uuid: str | None = None) -> None:
        self._state = PipelineState(working_directory=working_directory, run_uuid=run_uuid)
        self._lock = asyncio.Lock()
        self._analysis_attempts: Counter[str] = Counter()
        self._usage_attempts: Counter[str] = Counter()

    async def snapshot(self) -> PipelineState:
        """Return a point-in-time deep copy of the state."""
        async with self._lock:
            return self._state.snapshot()

    async def merge_workflow(self, records: Iterable[WorkflowRecord]) -> MergeResult:
        records = list(records)
        async with self._lock:
            result = merge_workflow_records(self._state, records)
            correlate_jobs(self._state)
        _logger.debug(
            "store.workflow_merged",
            inserted=result.inserted,
            updated=result.updated,
        )
        return result

    async def merge_scheduler(self, records: Iterable[SchedulerRecord]) -> MergeResult:
        records = list(records)
        async with self._lock:
            result = merge_scheduler_records(self._state, records)
            correlate_jobs(self._state)
        _logger.debug(
            "store.scheduler_merged",
            inserted=result.inserted,
            updated=result.updated,
        )
        return result

    async def apply_log(self, info: LogInfo) -> None:
        async with self._lock:
            apply_log_info(self._state, info)

    async def attach_analyses(self, analyses: Iterable[tuple[str, FailureAnalysis]]) -> int:
        analyses = list(analyses)
        async with self._lock:
            return attach_failure_analyses(self._state, analyses)

    async def attach_usage(self, usages: Iterable[tuple[str, ResourceUsage]]) -> int:
        usages = list(usages)
        async with self._lock:
            return attach_resource_usage(self._state, usages)

    async def record_analysis_failures(self, scheduler_job_ids: Iterable[str]) -> None:
        """Count failed analysis attempts; jobs at the limit are no longer offered."""
        async with self._lock:
            self._analysis_attempts.update(scheduler_job_ids)

    async def record_usage_misses(self, scheduler_job_ids: Iterable[str]) -> None:
        """Count usage queries that failed or came back without peak memory."""
        async with self._lock:
            self._usage_attempts.update(scheduler_job_ids)

    async def failed_jobs_needing_analysis(self, limit: int) -> list[Job]:
        """Failed jobs with a scheduler id and no analysis yet.

        Jobs with the fewest failed attempts come first, then by id, so a few
        jobs whose analysis keeps failing cannot starve the rest.
        """
        async with self._lock:
            candidates = [
                job.model_copy(deep=True)
                for job in self._state.jobs.values()
                if job.status is JobStatus.FAILED
                and job.scheduler_job_id is not None
                and job.failure_analysis is None
                and self._analysis_attempts[job.scheduler_job_id] < MAX_ENRICHMENT_ATTEMPTS
            ]
            attempts = dict(self._analysis_attempts)
        candidates.sort(key=lambda j: (attempts.get(j.scheduler_job_id or "", 0), j.id))
        return candidates[:limit]

    async def jobs_needing_usage(self, limit: int) -> list[Job]:
        """Finished jobs with a scheduler id whose peak memory is still unknown."""
        async with self._lock:
            candidates = [
                job.model_copy(deep=True)
                for job in self._state.jobs.values()
                if job.status in (JobStatus.COMPLETED, JobStatus.FAILED)
                and job.scheduler_job_id is not None
                and (job.usage is None or job.usage.max_rss_mb is None)
                and self._usage_attempts[job.scheduler_job_id] < MAX_ENRICHMENT_ATTEMPTS
            ]
            attempts = dict(self._usage_attempts)
        candidates.sort(key=lambda j: (attempts.get(j.scheduler_job_id or "", 0), j.id))
        return candidates[:limit]


__all__ = ["MAX_ENRICHMENT_ATTEMPTS", "StateStore"]
