"""SLURM failure diagnostics from ``sacct -j``."""

from __future__ import annotations

from charmer.core.exceptions import FailureAnalysisError, JobNotFoundError
from charmer.failure.classifier import FailureDiagnostics, FailureMarker, build_analysis
from charmer.failure.models import FailureAnalysis
from charmer.schedulers.base import run_command
from charmer.schedulers.parsers import (
    FIELD_DELIMITER,
    MemoryFormat,
    non_empty,
    parse_duration_seconds,
    parse_exit_code,
    parse_memory_mb,
)

FAILURE_FORMAT = "State,ExitCode,MaxRSS,ReqMem,Elapsed,Timelimit,NodeList"
FAILURE_FIELDS = 7

_STATE_MARKERS = {
    "OUT_OF_MEMORY": FailureMarker.MEMORY_LIMIT,
    "TIMEOUT": FailureMarker.TIME_LIMIT,
    "CANCELLED": FailureMarker.CANCELLED,
    "NODE_FAIL": FailureMarker.NODE_FAILURE,
    "FAILED": FailureMarker.GENERIC_FAILURE,
    "BOOT_FAIL": FailureMarker.GENERIC_FAILURE,
    "DEADLINE": FailureMarker.GENERIC_FAILURE,
}


def failure_command(job_id: str) -> list[str]:
    # No -X: MaxRSS is only reported on the job's steps, not the allocation
    return [
        "sacct",
        "-j",
        job_id,
        "--parsable2",
        "--noheader",
        "--format",
        FAILURE_FORMAT,
    ]


def extract_diagnostics(job_id: str, output: str) -> FailureDiagnostics:
    """Reduce ``sacct -j`` output to diagnostics.

    The first line is the job allocation and supplies state, exit code and
    limits; peak memory is the maximum MaxRSS over every line.

    Raises:
        JobNotFoundError: If sacct printed nothing for the job.
        FailureAnalysisError: If the allocation line is malformed.
    """
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        raise JobNotFoundError(job_id)

    fields = lines[0].split(FIELD_DELIMITER)
    if len(fields) < FAILURE_FIELDS:
        raise FailureAnalysisError(
            f"Expected {FAILURE_FIELDS} fields, got {len(fields)}: {lines[0]!r}"
        )

    raw_state = fields[0].strip()
    exit_code, signal = parse_exit_code(fields[1])
    rss_values = []
    for line in lines:
        step = line.split(FIELD_DELIMITER)
        if len(step) >= FAILURE_FIELDS:
            rss = parse_memory_mb(step[2], MemoryFormat.SLURM_SACCT)
            if rss is not None:
                rss_values.append(rss)

    base_state = raw_state.split()[0].upper().rstrip("+") if raw_state else ""
    marker = _STATE_MARKERS.get(base_state)
    cancelled_by = None
    if " by " in raw_state:
        cancelled_by = raw_state.split(" by ", 1)[1].strip() or None

    return FailureDiagnostics(
        job_id=job_id,
        scheduler="slurm",
        raw_state=raw_state,
        markers=frozenset({marker}) if marker else frozenset(),
        exit_code=exit_code,
        signal=signal,
        max_rss_mb=max(rss_values) if rss_values else None,
        memory_limit_mb=parse_memory_mb(fields[3], MemoryFormat.SLURM_SACCT),
        elapsed_seconds=parse_duration_seconds(fields[4]),
        time_limit_seconds=parse_duration_seconds(fields[5]),
        node=non_empty(fields[6]),
        cancelled_by=cancelled_by,
    )


async def analyze_failure(job_id: str, *, timeout: float = 30.0) -> FailureAnalysis:
    """Query sacct for one job and classify its failure.

    Raises:
        SchedulerQueryError: If sacct cannot be run.
        JobNotFoundError: If sacct has no record of the job.
        FailureAnalysisError: If the record cannot be interpreted.
    """
    output = await run_command(*failure_command(job_id), timeout=timeout)
    return build_analysis(extract_diagnostics(job_id, output))


__all__ = ["analyze_failure", "extract_diagnostics", "failure_command"]
