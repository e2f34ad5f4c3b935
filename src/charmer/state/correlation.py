"""Secondary correlation between scheduler-only and metadata-only jobs.

A scheduler job whose comment was missing or did not match the workflow
naming convention, and a metadata record keyed by its output path, can
describe the same real job under two ids.  This pass pairs them by rule
name and start time and folds each confirmed pair into one entry.

Unification rule for a pair (scheduler entry survives):

- content fields come from metadata: outputs, inputs, shell command, log
  files, conda env, container image
- status, resources, error, usage and scheduler job id stay from the
  scheduler
- timing prefers the scheduler value and falls back to metadata
- provenance flags are unioned
- the absorbed id is recorded in ``PipelineState.aliases`` so later
  metadata merges land on the survivor instead of re-creating the duplicate
"""

from __future__ import annotations

from charmer.core.logging import get_logger
from charmer.state.models import Job, PipelineState

_logger = get_logger("correlation")

# Maximum start-time difference for two entries to be the same job
MATCH_WINDOW_SECONDS = 60


def _scheduler_only(job: Job) -> bool:
    sources = job.data_sources
    return sources.has_scheduler_data and not sources.workflow_metadata


def _metadata_only(job: Job) -> bool:
    sources = job.data_sources
    return sources.workflow_metadata and not sources.has_scheduler_data


def find_matches(state: PipelineState) -> list[tuple[str, str]]:
    """Return ``(scheduler_id, metadata_id)`` pairs, each job used at most once.

    Among competing candidates the smallest start-time difference wins;
    ties break on the ids so the result does not depend on dict order.
    """
    scheduler_jobs = [
        (j, j.timing.started_at) for j in state.jobs.values()
        if _scheduler_only(j) and not j.is_target_rule and j.timing.started_at is not None
    ]
    metadata_jobs = [
        (j, j.timing.started_at) for j in state.jobs.values()
        if _metadata_only(j) and not j.is_target_rule and j.timing.started_at is not None
    ]

    candidates: list[tuple[float, str, str]] = []
    for sched, sched_start in scheduler_jobs:
        for meta, meta_start in metadata_jobs:
            if sched.rule != meta.rule:
                continue
            delta = abs((sched_start - meta_start).total_seconds())
            if delta <= MATCH_WINDOW_SECONDS:
                candidates.append((delta, sched.id, meta.id))

    matches: list[tuple[str, str]] = []
    used: set[str] = set()
    for _, sched_id, meta_id in sorted(candidates):
        if sched_id in used or meta_id in used:
            continue
        used.update((sched_id, meta_id))
        matches.append((sched_id, meta_id))
    return matches


def unify_jobs(state: PipelineState, survivor_id: str, absorbed_id: str) -> Job:
    """Fold ``absorbed_id`` into ``survivor_id`` and alias the old id."""
    survivor = state.jobs[survivor_id]
    absorbed = state.remove_job(absorbed_id)
    if absorbed is None:
        return survivor

    for output in absorbed.outputs:
        if output not in survivor.outputs:
            survivor.outputs.append(output)
    if absorbed.inputs:
        survivor.inputs = list(absorbed.inputs)
    if absorbed.shell_command:
        survivor.shell_command = absorbed.shell_command
    if absorbed.log_files:
        survivor.log_files = list(absorbed.log_files)
    survivor.conda_env = absorbed.conda_env or survivor.conda_env
    survivor.container_image = absorbed.container_image or survivor.container_image
    survivor.wildcards = survivor.wildcards or absorbed.wildcards

    timing = survivor.timing
    timing.queued_at = timing.queued_at or absorbed.timing.queued_at
    timing.started_at = timing.started_at or absorbed.timing.started_at
    timing.completed_at = timing.completed_at or absorbed.timing.completed_at

    survivor.data_sources.union(absorbed.data_sources)
    survivor.is_workflow_job = True
    survivor.is_target_rule = survivor.is_target_rule or absorbed.is_target_rule
    survivor.failure_analysis = survivor.failure_analysis or absorbed.failure_analysis

    state.aliases[absorbed_id] = survivor_id
    for alias, target in state.aliases.items():
        if target == absorbed_id:
            state.aliases[alias] = survivor_id
    return survivor


def correlate_jobs(state: PipelineState) -> list[tuple[str, str]]:
    """Run the correlation pass and unify every confirmed match."""
    matches = find_matches(state)
    for survivor_id, absorbed_id in matches:
        unify_jobs(state, survivor_id, absorbed_id)
        _logger.debug(
            "correlation.unified",
            survivor=survivor_id,
            absorbed=absorbed_id,
        )
    if matches:
        state.touch()
    return matches


__all__ = ["MATCH_WINDOW_SECONDS", "correlate_jobs", "find_matches", "unify_jobs"]
