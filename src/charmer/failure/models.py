"""Failure classification result types.

A classified failure is one of six modes.  Each mode is its own pydantic
model tagged by ``kind`` so ``FailureAnalysis`` serializes to JSON and a
renderer can branch on ``mode.kind`` without isinstance chains.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field


class OutOfMemory(BaseModel):
    """Job was killed for exceeding its memory allocation."""

    kind: Literal["out_of_memory"] = "out_of_memory"
    used_mb: int
    limit_mb: int
    suggested_mb: int


class Timeout(BaseModel):
    """Job was killed for exceeding its wall-clock limit."""

    kind: Literal["timeout"] = "timeout"
    elapsed_seconds: int
    limit_seconds: int
    suggested_seconds: int


class ExitCode(BaseModel):
    """Job's command exited non-zero (optionally via a signal)."""

    kind: Literal["exit_code"] = "exit_code"
    code: int
    signal: int | None = None


class Cancelled(BaseModel):
    """Job was cancelled by a user or administrator."""

    kind: Literal["cancelled"] = "cancelled"
    by: str | None = None


class NodeFailure(BaseModel):
    """The execution node or host failed underneath the job."""

    kind: Literal["node_failure"] = "node_failure"
    node: str | None = None


class UnknownFailure(BaseModel):
    """No recognizable failure marker was present."""

    kind: Literal["unknown"] = "unknown"
    raw_state: str


FailureMode = Annotated[
    OutOfMemory | Timeout | ExitCode | Cancelled | NodeFailure | UnknownFailure,
    Field(discriminator="kind"),
]


class FailureAnalysis(BaseModel):
    """Classified failure for one scheduler job, with remediation text."""

    job_id: str
    scheduler: Literal["slurm", "lsf"]
    mode: FailureMode
    explanation: str
    suggestion: str
    raw_state: str = Field(default="", description="Scheduler state or termination reason")
    max_rss_mb: int | None = None
    memory_limit_mb: int | None = None
    elapsed_seconds: int | None = None
    time_limit_seconds: int | None = None


__all__ = [
    "Cancelled",
    "ExitCode",
    "FailureAnalysis",
    "FailureMode",
    "NodeFailure",
    "OutOfMemory",
    "Timeout",
    "UnknownFailure",
]
