"""Scheduler-dispatching entry point for on-demand failure analysis."""

from __future__ import annotations

from charmer.failure import lsf, slurm
from charmer.failure.models import FailureAnalysis
from charmer.state.records import SchedulerType


async def analyze_failure(
    scheduler: SchedulerType,
    job_id: str,
    *,
    timeout: float = 30.0,
) -> FailureAnalysis:
    """Classify the failure of scheduler job ``job_id``.

    Raises:
        SchedulerQueryError: If the accounting tool cannot be run.
        JobNotFoundError: If the scheduler has no record of the job.
        FailureAnalysisError: If the record cannot be interpreted.
    """
    if scheduler is SchedulerType.SLURM:
        return await slurm.analyze_failure(job_id, timeout=timeout)
    return await lsf.analyze_failure(job_id, timeout=timeout)


__all__ = ["analyze_failure"]
