"""Unified pipeline data model.

``Job`` is the unit of observation and ``PipelineState`` the aggregate root.
Both are pydantic models so a snapshot is a deep ``model_copy`` and the CLI
can dump them as JSON.  All mutation goes through ``charmer.state.merge``;
the methods here only maintain the ``jobs_by_rule`` index and derive
read-only aggregates.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from charmer.failure.models import FailureAnalysis
from charmer.state.environment import ExecutionEnvironment
from charmer.state.records import RecordSource
from charmer.utils.time import utc_now

TARGET_JOB_PREFIX = "__target_"


def target_job_id(rule: str) -> str:
    """Id of the synthetic job that stands in for a target rule."""
    return f"{TARGET_JOB_PREFIX}{rule}__"


class JobStatus(str, Enum):
    """Unified job status across workflow metadata and schedulers."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobTiming(BaseModel):
    queued_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobResources(BaseModel):
    """Resources requested from the scheduler."""

    cpus: int | None = None
    memory_mb: int | None = None
    time_limit_seconds: int | None = None
    partition: str | None = Field(default=None, description="SLURM partition or LSF queue")
    node: str | None = Field(default=None, description="Node list or execution host")


class ResourceUsage(BaseModel):
    """Resources actually consumed, as reported by accounting."""

    max_rss_mb: int | None = None
    elapsed_seconds: int | None = None
    cpu_time_seconds: int | None = None

    def combined_with(self, newer: ResourceUsage) -> ResourceUsage:
        """Fields from ``newer`` where it has them, ours otherwise."""
        return ResourceUsage(
            max_rss_mb=_first(newer.max_rss_mb, self.max_rss_mb),
            elapsed_seconds=_first(newer.elapsed_seconds, self.elapsed_seconds),
            cpu_time_seconds=_first(newer.cpu_time_seconds, self.cpu_time_seconds),
        )


def _first(*values: int | None) -> int | None:
    return next((v for v in values if v is not None), None)


class JobError(BaseModel):
    exit_code: int
    message: str


class DataSources(BaseModel):
    """Provenance flags.  Set by merges, never cleared."""

    workflow_metadata: bool = False
    slurm_squeue: bool = False
    slurm_sacct: bool = False
    lsf_bjobs: bool = False
    lsf_bhist: bool = False

    def mark(self, source: RecordSource) -> None:
        setattr(self, source.value, True)

    def union(self, other: DataSources) -> None:
        for source in RecordSource:
            if getattr(other, source.value):
                self.mark(source)

    def active(self) -> set[RecordSource]:
        return {source for source in RecordSource if getattr(self, source.value)}

    @property
    def has_scheduler_data(self) -> bool:
        return any(source.is_scheduler for source in self.active())


class PipelineErrorKind(str, Enum):
    MISSING_INPUT = "missing_input"
    COMMAND_FAILED = "command_failed"
    LOCKED = "locked"
    INCOMPLETE_FILES = "incomplete_files"
    SYNTAX_ERROR = "syntax_error"
    WORKFLOW_ERROR = "workflow_error"
    RULE_ERROR = "rule_error"
    GENERIC = "generic"


class PipelineError(BaseModel):
    """A pipeline-level error line from the main log, classified."""

    kind: PipelineErrorKind
    message: str
    rule: str | None = None
    exit_code: int | None = None
    details: list[str] = Field(default_factory=list)


class Job(BaseModel):
    """One pipeline job as seen through every source that reported it."""

    id: str
    rule: str
    wildcards: str | None = None
    outputs: list[str] = Field(default_factory=list)
    inputs: list[str] = Field(default_factory=list)
    status: JobStatus = JobStatus.PENDING
    scheduler_job_id: str | None = None
    shell_command: str = ""
    timing: JobTiming = Field(default_factory=JobTiming)
    resources: JobResources = Field(default_factory=JobResources)
    usage: ResourceUsage | None = None
    log_files: list[str] = Field(default_factory=list)
    error: JobError | None = None
    conda_env: str | None = None
    container_image: str | None = None
    data_sources: DataSources = Field(default_factory=DataSources)
    is_target_rule: bool = False
    is_workflow_job: bool = False
    failure_analysis: FailureAnalysis | None = Field(
        default=None,
        description="Attached by failure enrichment; merges never touch it",
    )

    def environment(self) -> ExecutionEnvironment:
        return ExecutionEnvironment.detect(
            self.shell_command, self.conda_env, self.container_image
        )

    def runtime_seconds(self, now: datetime | None = None) -> int | None:
        """Seconds from start to completion, or to ``now`` while running."""
        started = self.timing.started_at
        if started is None:
            return None
        end = self.timing.completed_at
        if end is None:
            if self.status is not JobStatus.RUNNING:
                return None
            end = now or utc_now()
        return max(0, int((end - started).total_seconds()))


@dataclass
class JobCounts:
    total: int = 0
    pending: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    unknown: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class EtaEstimate:
    """Remaining-time estimate; ``reliable`` once enough jobs have finished."""

    seconds: int
    reliable: bool


class PipelineState(BaseModel):
    """Aggregate root for one monitored pipeline."""

    working_directory: Path = Field(default_factory=Path.cwd)
    run_uuid: str | None = Field(
        default=None,
        description="Learned from the first scheduler job name seen",
    )
    jobs: dict[str, Job] = Field(default_factory=dict)
    jobs_by_rule: dict[str, list[str]] = Field(default_factory=dict)
    aliases: dict[str, str] = Field(
        default_factory=dict,
        description="Absorbed job id -> surviving id after correlation",
    )
    last_updated: datetime = Field(default_factory=utc_now)
    total_jobs: int | None = Field(default=None, description="Total from the main log")
    rule_totals: dict[str, int] = Field(
        default_factory=dict,
        description="Per-rule job counts from the main log's job stats table",
    )
    cores: int | None = None
    host: str | None = None
    finished: bool = False
    pipeline_errors: list[PipelineError] = Field(default_factory=list)

    # ─── Index maintenance ────────────────────────────────────────────

    def resolve_id(self, job_id: str) -> str:
        """Follow correlation aliases to the surviving id."""
        seen: set[str] = set()
        while job_id in self.aliases and job_id not in seen:
            seen.add(job_id)
            job_id = self.aliases[job_id]
        return job_id

    def get_job(self, job_id: str) -> Job | None:
        return self.jobs.get(self.resolve_id(job_id))

    def add_job(self, job: Job) -> None:
        self.jobs[job.id] = job
        ids = self.jobs_by_rule.setdefault(job.rule, [])
        if job.id not in ids:
            ids.append(job.id)

    def remove_job(self, job_id: str) -> Job | None:
        job = self.jobs.pop(job_id, None)
        if job is None:
            return None
        ids = self.jobs_by_rule.get(job.rule)
        if ids is not None:
            if job_id in ids:
                ids.remove(job_id)
            if not ids:
                del self.jobs_by_rule[job.rule]
        return job

    def touch(self, now: datetime | None = None) -> None:
        """Advance ``last_updated``; it never moves backwards."""
        now = now or utc_now()
        if now > self.last_updated:
            self.last_updated = now

    def snapshot(self) -> PipelineState:
        return self.model_copy(deep=True)

    # ─── Derived views ────────────────────────────────────────────────

    def rules(self) -> list[str]:
        return sorted(self.jobs_by_rule)

    def jobs_for_rule(self, rule: str) -> list[Job]:
        return [self.jobs[i] for i in self.jobs_by_rule.get(rule, []) if i in self.jobs]

    def job_counts(self) -> JobCounts:
        counts = JobCounts(total=len(self.jobs))
        for job in self.jobs.values():
            attr = job.status.value
            setattr(counts, attr, getattr(counts, attr) + 1)
        return counts

    def estimate_eta(self) -> EtaEstimate | None:
        """Estimate the time left, assuming serial execution.

        Running jobs are assumed half done.  Returns None until at least one
        completed job has both start and completion times.
        """
        counts = self.job_counts()
        total = self.total_jobs if self.total_jobs is not None else counts.total
        if counts.completed == 0:
            return None

        runtimes = [
            job.runtime_seconds()
            for job in self.jobs.values()
            if job.status is JobStatus.COMPLETED and job.timing.completed_at is not None
        ]
        runtimes = [r for r in runtimes if r is not None]
        if not runtimes:
            return None

        avg_runtime = sum(runtimes) // len(runtimes)
        remaining = max(0, total - counts.completed)
        running_part = (counts.running * avg_runtime) // 2
        waiting_part = max(0, remaining - counts.running) * avg_runtime
        reliable = counts.completed > 2 and counts.completed * 5 >= total
        return EtaEstimate(seconds=running_part + waiting_part, reliable=reliable)


__all__ = [
    "DataSources",
    "EtaEstimate",
    "Job",
    "JobCounts",
    "JobError",
    "JobResources",
    "JobStatus",
    "JobTiming",
    "PipelineError",
    "PipelineErrorKind",
    "PipelineState",
    "ResourceUsage",
    "TARGET_JOB_PREFIX",
    "target_job_id",
]
