"""Scheduler state to unified ``JobStatus`` mapping.

One total table per scheduler.  Terminal failure states also produce a
``JobError`` carrying the exit code and a synthesized message.
"""

from __future__ import annotations

from charmer.state.models import JobError, JobStatus
from charmer.state.records import (
    LsfState,
    LsfStateKind,
    SchedulerState,
    SlurmState,
    SlurmStateKind,
)

SLURM_STATUS: dict[SlurmStateKind, JobStatus] = {
    SlurmStateKind.PENDING: JobStatus.QUEUED,
    SlurmStateKind.RUNNING: JobStatus.RUNNING,
    SlurmStateKind.COMPLETED: JobStatus.COMPLETED,
    SlurmStateKind.FAILED: JobStatus.FAILED,
    SlurmStateKind.CANCELLED: JobStatus.CANCELLED,
    SlurmStateKind.TIMEOUT: JobStatus.FAILED,
    SlurmStateKind.OUT_OF_MEMORY: JobStatus.FAILED,
    SlurmStateKind.NODE_FAIL: JobStatus.FAILED,
    SlurmStateKind.UNKNOWN: JobStatus.UNKNOWN,
}

LSF_STATUS: dict[LsfStateKind, JobStatus] = {
    LsfStateKind.PEND: JobStatus.QUEUED,
    LsfStateKind.RUN: JobStatus.RUNNING,
    LsfStateKind.DONE: JobStatus.COMPLETED,
    LsfStateKind.EXIT: JobStatus.FAILED,
    LsfStateKind.PSUSP: JobStatus.PENDING,
    LsfStateKind.USUSP: JobStatus.PENDING,
    LsfStateKind.SSUSP: JobStatus.PENDING,
    LsfStateKind.ZOMBI: JobStatus.UNKNOWN,
    LsfStateKind.UNKNOWN: JobStatus.UNKNOWN,
}

# Exit code reported for terminations with no process exit status
NO_EXIT_CODE = -1


def _exited(exit_code: int | None) -> JobError:
    code = exit_code if exit_code is not None else 1
    return JobError(exit_code=code, message=f"Job failed with exit code {code}")


def map_slurm_state(state: SlurmState) -> tuple[JobStatus, JobError | None]:
    status = SLURM_STATUS[state.kind]
    error: JobError | None = None
    if state.kind is SlurmStateKind.FAILED:
        error = _exited(state.exit_code)
    elif state.kind is SlurmStateKind.TIMEOUT:
        error = JobError(exit_code=NO_EXIT_CODE, message="Job exceeded time limit")
    elif state.kind is SlurmStateKind.OUT_OF_MEMORY:
        error = JobError(exit_code=NO_EXIT_CODE, message="Job exceeded memory limit")
    elif state.kind is SlurmStateKind.NODE_FAIL:
        error = JobError(exit_code=NO_EXIT_CODE, message="Node failure")
    return status, error


def map_lsf_state(state: LsfState) -> tuple[JobStatus, JobError | None]:
    status = LSF_STATUS[state.kind]
    error = _exited(state.exit_code) if state.kind is LsfStateKind.EXIT else None
    return status, error


def map_scheduler_state(state: SchedulerState) -> tuple[JobStatus, JobError | None]:
    """Map any scheduler's state to ``(JobStatus, JobError | None)``."""
    if isinstance(state, SlurmState):
        return map_slurm_state(state)
    return map_lsf_state(state)


__all__ = [
    "LSF_STATUS",
    "SLURM_STATUS",
    "map_lsf_state",
    "map_scheduler_state",
    "map_slurm_state",
]
