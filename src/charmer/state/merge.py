"""Merge producer output into ``PipelineState``.

Each entry point folds one batch from one producer into the state:

- ``merge_workflow_records``: Snakemake metadata files
- ``merge_scheduler_records``: live queue or accounting records
- ``apply_log_info``: main-log progress and target rules

Field rules shared by all paths:

- provenance flags are only ever set
- ``timing.queued_at`` is first-write-wins
- ``status``, ``resources`` and ``error`` are last-write-wins for scheduler data
- applying the same batch twice changes nothing but ``last_updated``

These functions are synchronous and do no I/O; callers hold the state lock
only for the duration of the call.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from charmer.core.logging import get_logger
from charmer.failure.models import FailureAnalysis
from charmer.state.identity import scheduler_identity, workflow_identity
from charmer.state.models import (
    Job,
    JobResources,
    JobStatus,
    JobTiming,
    PipelineState,
    ResourceUsage,
    target_job_id,
)
from charmer.state.records import RecordSource, SchedulerRecord, WorkflowRecord
from charmer.state.status_map import map_scheduler_state
from charmer.utils.time import utc_now
from charmer.workflow.log_errors import classify_pipeline_error

if TYPE_CHECKING:
    from charmer.workflow.main_log import LogInfo

_logger = get_logger("merge")


@dataclass
class MergeResult:
    """How many records created new jobs versus updated existing ones."""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def _epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, UTC)


# ─── Workflow metadata ────────────────────────────────────────────────


def _workflow_status(record: WorkflowRecord) -> JobStatus:
    if record.incomplete:
        return JobStatus.RUNNING
    if record.end_time is not None:
        return JobStatus.COMPLETED
    return JobStatus.PENDING


def merge_workflow_records(
    state: PipelineState,
    records: Iterable[WorkflowRecord],
    now: datetime | None = None,
) -> MergeResult:
    """Fold metadata records into ``state``.

    Metadata is authoritative for job content (inputs, outputs, command,
    logs, environment).  Its status only applies to jobs no scheduler has
    reported on, since scheduler state is fresher.
    """
    result = MergeResult()
    for record in records:
        identity = workflow_identity(record)
        job_id = state.resolve_id(identity.job_id)
        started_at = _epoch(record.start_time)
        completed_at = None if record.incomplete else _epoch(record.end_time)
        job = state.jobs.get(job_id)

        if job is None:
            job = Job(
                id=job_id,
                rule=identity.rule,
                outputs=[record.output_path],
                inputs=list(record.inputs),
                wildcards=identity.wildcards,
                status=_workflow_status(record),
                shell_command=record.shell_command or "",
                timing=JobTiming(started_at=started_at, completed_at=completed_at),
                log_files=list(record.log),
                conda_env=record.conda_env,
                container_image=record.container_image,
                is_workflow_job=True,
            )
            job.data_sources.mark(RecordSource.WORKFLOW_METADATA)
            state.add_job(job)
            result.inserted += 1
            continue

        if record.output_path not in job.outputs:
            job.outputs.append(record.output_path)
        job.inputs = list(record.inputs)
        if record.shell_command:
            job.shell_command = record.shell_command
        job.log_files = list(record.log)
        job.conda_env = record.conda_env
        job.container_image = record.container_image
        if job.wildcards is None:
            job.wildcards = identity.wildcards
        if job.timing.started_at is None:
            job.timing.started_at = started_at
        if job.timing.completed_at is None:
            job.timing.completed_at = completed_at
        if not job.data_sources.has_scheduler_data and not job.is_target_rule:
            job.status = _workflow_status(record)
        job.is_workflow_job = True
        job.data_sources.mark(RecordSource.WORKFLOW_METADATA)
        result.updated += 1

    state.touch(now)
    return result


# ─── Scheduler records ───────────────────────────────────────────────


def _resources(record: SchedulerRecord) -> JobResources:
    return JobResources(
        cpus=record.cpu_count,
        memory_mb=record.memory_limit_mb,
        time_limit_seconds=record.time_limit_seconds,
        partition=record.queue,
        node=record.exec_host,
    )


def _usage(record: SchedulerRecord) -> ResourceUsage | None:
    elapsed = None
    if record.start_time is not None and record.end_time is not None:
        elapsed = max(0, int((record.end_time - record.start_time).total_seconds()))
    if record.memory_used_mb is None and elapsed is None:
        return None
    return ResourceUsage(max_rss_mb=record.memory_used_mb, elapsed_seconds=elapsed)


def merge_scheduler_records(
    state: PipelineState,
    records: Iterable[SchedulerRecord],
    now: datetime | None = None,
) -> MergeResult:
    """Fold live-queue or accounting records into ``state``.

    Each record's ``source`` decides which provenance flag is set, so one
    batch may mix sources.  ``run_uuid`` is learned from the first job name.
    """
    result = MergeResult()
    for record in records:
        identity = scheduler_identity(record)
        job_id = state.resolve_id(identity.job_id)
        status, error = map_scheduler_state(record.state)

        if state.run_uuid is None and record.name:
            state.run_uuid = record.name

        job = state.jobs.get(job_id)
        if job is None:
            job = Job(
                id=job_id,
                rule=identity.rule,
                wildcards=identity.wildcards,
                status=status,
                scheduler_job_id=record.job_id,
                timing=JobTiming(
                    queued_at=record.submit_time,
                    started_at=record.start_time,
                    completed_at=record.end_time,
                ),
                resources=_resources(record),
                usage=_usage(record),
                error=error,
                is_workflow_job=identity.is_workflow_job,
            )
            job.data_sources.mark(record.source)
            state.add_job(job)
            result.inserted += 1
            continue

        job.scheduler_job_id = record.job_id
        job.status = status
        job.resources = _resources(record)
        job.error = error
        if job.timing.queued_at is None:
            job.timing.queued_at = record.submit_time
        if record.start_time is not None:
            job.timing.started_at = record.start_time
        if record.end_time is not None:
            job.timing.completed_at = record.end_time
        usage = _usage(record)
        if usage is not None:
            job.usage = usage if job.usage is None else job.usage.combined_with(usage)
        job.wildcards = identity.wildcards or job.wildcards
        job.is_workflow_job = job.is_workflow_job or identity.is_workflow_job
        job.data_sources.mark(record.source)
        result.updated += 1

    state.touch(now)
    return result


# ─── Main log ────────────────────────────────────────────────────────


def _target_status(state: PipelineState) -> JobStatus:
    if state.finished and not state.pipeline_errors:
        return JobStatus.COMPLETED
    if state.finished:
        return JobStatus.FAILED
    return JobStatus.PENDING


def apply_log_info(
    state: PipelineState,
    info: LogInfo,
    now: datetime | None = None,
) -> None:
    """Apply main-log progress: totals, host, errors and target-rule jobs.

    Target rules have no outputs and so never get a metadata file; each one
    is represented by a synthetic ``__target_<rule>__`` job whose status
    follows the pipeline as a whole.

    Totals, errors and target rules describe the log that was just parsed,
    so they replace whatever an earlier log reported.  Target rules that the
    current log no longer names lose their synthetic job and their flag.
    """
    now = now or utc_now()
    state.total_jobs = info.total_jobs
    state.rule_totals = dict(info.jobs_by_rule)
    if info.cores is not None:
        state.cores = info.cores
    if info.host is not None:
        state.host = info.host
    state.finished = info.finished
    state.pipeline_errors = [classify_pipeline_error(line) for line in info.errors]

    _retract_stale_targets(state, info.target_rules)

    status = _target_status(state)
    for rule in sorted(info.target_rules):
        job_id = target_job_id(rule)
        if rule not in state.jobs_by_rule:
            state.add_job(Job(id=job_id, rule=rule, status=status, is_target_rule=True))

        for job in state.jobs_for_rule(rule):
            if job.id != job_id and job.outputs:
                continue
            job.is_target_rule = True
            job.status = status
            if state.finished and job.timing.completed_at is None:
                job.timing.completed_at = now

    state.touch(now)


def _retract_stale_targets(state: PipelineState, target_rules: set[str]) -> None:
    stale = {
        job.rule
        for job in state.jobs.values()
        if job.is_target_rule and job.rule not in target_rules
    }
    for rule in sorted(stale):
        state.remove_job(target_job_id(rule))
        for job in state.jobs_for_rule(rule):
            job.is_target_rule = False
        _logger.debug("merge.target_retracted", rule=rule)


# ─── Failure enrichment ──────────────────────────────────────────────


def attach_failure_analyses(
    state: PipelineState,
    analyses: Iterable[tuple[str, FailureAnalysis]],
) -> int:
    """Attach analyses to their jobs by id.  Returns how many were attached."""
    attached = 0
    for job_id, analysis in analyses:
        job = state.get_job(job_id)
        if job is None:
            _logger.debug("merge.analysis_orphaned", job_id=job_id)
            continue
        job.failure_analysis = analysis
        attached += 1
    if attached:
        state.touch()
    return attached


def attach_resource_usage(
    state: PipelineState,
    usages: Iterable[tuple[str, ResourceUsage]],
) -> int:
    """Fold per-job accounting usage in by id.  Returns how many jobs changed."""
    attached = 0
    for job_id, usage in usages:
        job = state.get_job(job_id)
        if job is None:
            _logger.debug("merge.usage_orphaned", job_id=job_id)
            continue
        job.usage = usage if job.usage is None else job.usage.combined_with(usage)
        attached += 1
    if attached:
        state.touch()
    return attached


__all__ = [
    "MergeResult",
    "apply_log_info",
    "attach_failure_analyses",
    "attach_resource_usage",
    "merge_scheduler_records",
    "merge_workflow_records",
]
