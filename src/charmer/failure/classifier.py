"""Deterministic failure classification.

Scheduler-specific extractors reduce raw accounting output to
``FailureDiagnostics``: a set of termination markers plus whatever numbers
were available.  ``classify_failure`` maps diagnostics to exactly one
failure mode, in this precedence:

1. memory-limit marker
2. time-limit marker
3. cancellation marker
4. node or host failure marker
5. generic failure: exit code 137, or SIGKILL with known memory usage, is
   treated as out of memory; anything else is a plain exit code
6. nothing recognizable: unknown
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from charmer.failure.models import (
    Cancelled,
    ExitCode,
    FailureAnalysis,
    FailureMode,
    NodeFailure,
    OutOfMemory,
    Timeout,
    UnknownFailure,
)
from charmer.schedulers.parsers import suggest_memory_mb, suggest_time_seconds
from charmer.utils.time import format_duration, format_runtime_lsf, format_runtime_slurm

SIGKILL = 9
OOM_KILLED_EXIT_CODE = 128 + SIGKILL

SchedulerName = Literal["slurm", "lsf"]


class FailureMarker(str, Enum):
    MEMORY_LIMIT = "memory_limit"
    TIME_LIMIT = "time_limit"
    CANCELLED = "cancelled"
    NODE_FAILURE = "node_failure"
    GENERIC_FAILURE = "generic_failure"


@dataclass(frozen=True)
class FailureDiagnostics:
    """Scheduler-neutral facts about one failed job."""

    job_id: str
    scheduler: SchedulerName
    raw_state: str = ""
    markers: frozenset[FailureMarker] = frozenset()
    exit_code: int | None = None
    signal: int | None = None
    max_rss_mb: int | None = None
    memory_limit_mb: int | None = None
    elapsed_seconds: int | None = None
    time_limit_seconds: int | None = None
    node: str | None = None
    cancelled_by: str | None = None


def _out_of_memory(diag: FailureDiagnostics) -> OutOfMemory:
    used = diag.max_rss_mb or 0
    limit = diag.memory_limit_mb or 0
    return OutOfMemory(used_mb=used, limit_mb=limit, suggested_mb=suggest_memory_mb(used, limit))


def classify_failure(diag: FailureDiagnostics) -> FailureMode:
    markers = diag.markers
    if FailureMarker.MEMORY_LIMIT in markers:
        return _out_of_memory(diag)
    if FailureMarker.TIME_LIMIT in markers:
        elapsed = diag.elapsed_seconds or 0
        limit = diag.time_limit_seconds or 0
        return Timeout(
            elapsed_seconds=elapsed,
            limit_seconds=limit,
            suggested_seconds=suggest_time_seconds(elapsed, limit),
        )
    if FailureMarker.CANCELLED in markers:
        return Cancelled(by=diag.cancelled_by)
    if FailureMarker.NODE_FAILURE in markers:
        return NodeFailure(node=diag.node)
    if FailureMarker.GENERIC_FAILURE in markers:
        code = diag.exit_code or 0
        if code == OOM_KILLED_EXIT_CODE or (
            diag.signal == SIGKILL and diag.max_rss_mb is not None
        ):
            return _out_of_memory(diag)
        return ExitCode(code=code, signal=diag.signal)
    return UnknownFailure(raw_state=diag.raw_state or "Unknown failure")


# ─── Rendering ───────────────────────────────────────────────────────

_SIGNAL_TEXT = {
    9: "Job killed with signal 9 (SIGKILL). Exit code: {code}",
    11: "Job crashed with signal 11 (SIGSEGV - segmentation fault). Exit code: {code}",
    15: "Job terminated with signal 15 (SIGTERM). Exit code: {code}",
}

_EXIT_CODE_TEXT = {
    1: "Job failed with exit code 1 (general error)",
    2: "Job failed with exit code 2 (misuse of shell command)",
    126: "Job failed with exit code 126 (command not executable)",
    127: "Job failed with exit code 127 (command not found)",
    137: "Job killed (likely OOM killer). Exit code 137 = 128 + 9 (SIGKILL)",
}


def _gb(mb: int) -> str:
    return f"{mb / 1024:.1f} GB"


def render_messages(mode: FailureMode, scheduler: SchedulerName) -> tuple[str, str]:
    """Return ``(explanation, suggestion)`` for a classified failure."""
    if isinstance(mode, OutOfMemory):
        return (
            f"Job exceeded memory limit. Used {_gb(mode.used_mb)} "
            f"but only {_gb(mode.limit_mb)} was allocated.",
            f"Increase memory to at least {_gb(mode.suggested_mb)}. "
            f"In your Snakefile, add:\n  resources: mem_mb={mode.suggested_mb}",
        )

    if isinstance(mode, Timeout):
        native = (
            f"--time={format_runtime_slurm(mode.suggested_seconds)}"
            if scheduler == "slurm"
            else f"-W {format_runtime_lsf(mode.suggested_seconds)}"
        )
        minutes = -(-mode.suggested_seconds // 60)
        return (
            f"Job exceeded time limit. Ran for {format_duration(mode.elapsed_seconds)} "
            f"but limit was {format_duration(mode.limit_seconds)}.",
            f"Increase time limit to at least {format_duration(mode.suggested_seconds)} "
            f"({native}). In your Snakefile, add:\n  resources: runtime={minutes}",
        )

    if isinstance(mode, ExitCode):
        if mode.signal is not None:
            template = _SIGNAL_TEXT.get(
                mode.signal, "Job exited with code {code} and signal {signal}"
            )
            explanation = template.format(code=mode.code, signal=mode.signal)
        else:
            explanation = _EXIT_CODE_TEXT.get(
                mode.code, f"Job failed with exit code {mode.code}"
            )
        if mode.code == OOM_KILLED_EXIT_CODE:
            suggestion = (
                "This is likely an out-of-memory error. Try increasing memory allocation."
            )
        else:
            suggestion = "Check the job's stderr log for error details."
        return explanation, suggestion

    if isinstance(mode, Cancelled):
        explanation = f"Job was cancelled by {mode.by}" if mode.by else "Job was cancelled"
        return (
            explanation,
            "Consider if this was intentional or due to dependency failure.",
        )

    if isinstance(mode, NodeFailure):
        explanation = (
            f"Job failed due to node {mode.node} failure"
            if mode.node
            else "Job failed due to node failure"
        )
        return explanation, "Re-run the job. If persistent, contact cluster admin."

    label = "SLURM" if scheduler == "slurm" else "LSF"
    return (
        f"Job failed with unknown state: {mode.raw_state}",
        f"Check {label} logs for details.",
    )


def build_analysis(diag: FailureDiagnostics) -> FailureAnalysis:
    """Classify ``diag`` and render its explanation and suggestion."""
    mode = classify_failure(diag)
    explanation, suggestion = render_messages(mode, diag.scheduler)
    return FailureAnalysis(
        job_id=diag.job_id,
        scheduler=diag.scheduler,
        mode=mode,
        explanation=explanation,
        suggestion=suggestion,
        raw_state=diag.raw_state,
        max_rss_mb=diag.max_rss_mb,
        memory_limit_mb=diag.memory_limit_mb,
        elapsed_seconds=diag.elapsed_seconds,
        time_limit_seconds=diag.time_limit_seconds,
    )


__all__ = [
    "FailureDiagnostics",
    "FailureMarker",
    "build_analysis",
    "classify_failure",
    "render_messages",
]
