"""Producer record shapes.

Every producer hands the merge engine one of two record types.  Neither
carries a cross-source identity; ``charmer.state.identity`` derives it.

``WorkflowRecord`` mirrors one Snakemake metadata file.  ``SchedulerRecord``
has the same shape for all schedulers and both query kinds (live queue and
accounting); the scheduler-specific part is confined to its ``state``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SchedulerType(str, Enum):
    """Batch schedulers charmer can poll."""

    SLURM = "slurm"
    LSF = "lsf"


class RecordSource(str, Enum):
    """Which producer a record came from.  One provenance flag per member."""

    WORKFLOW_METADATA = "workflow_metadata"
    SLURM_SQUEUE = "slurm_squeue"
    SLURM_SACCT = "slurm_sacct"
    LSF_BJOBS = "lsf_bjobs"
    LSF_BHIST = "lsf_bhist"

    @property
    def is_scheduler(self) -> bool:
        return self is not RecordSource.WORKFLOW_METADATA

    @property
    def is_historical(self) -> bool:
        return self in (RecordSource.SLURM_SACCT, RecordSource.LSF_BHIST)

    @classmethod
    def for_scheduler(cls, scheduler: SchedulerType, historical: bool) -> RecordSource:
        if scheduler is SchedulerType.SLURM:
            return cls.SLURM_SACCT if historical else cls.SLURM_SQUEUE
        return cls.LSF_BHIST if historical else cls.LSF_BJOBS


class SlurmStateKind(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"
    NODE_FAIL = "NODE_FAIL"
    UNKNOWN = "UNKNOWN"


class LsfStateKind(str, Enum):
    PEND = "PEND"
    RUN = "RUN"
    DONE = "DONE"
    EXIT = "EXIT"
    PSUSP = "PSUSP"
    USUSP = "USUSP"
    SSUSP = "SSUSP"
    ZOMBI = "ZOMBI"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class SlurmState:
    """A SLURM job state; ``exit_code`` is only meaningful for FAILED."""

    kind: SlurmStateKind
    exit_code: int | None = None
    raw: str = ""

    @classmethod
    def parse(cls, value: str, exit_code: int | None = None) -> SlurmState:
        """Parse a squeue/sacct state column (``CANCELLED by 123`` -> CANCELLED)."""
        raw = value.strip()
        base = raw.split()[0].upper().rstrip("+") if raw else ""
        try:
            kind = SlurmStateKind(base)
        except ValueError:
            kind = SlurmStateKind.UNKNOWN
        return cls(kind=kind, exit_code=exit_code, raw=raw or "UNKNOWN")


@dataclass(frozen=True)
class LsfState:
    """An LSF job state; ``exit_code`` is only meaningful for EXIT."""

    kind: LsfStateKind
    exit_code: int | None = None
    raw: str = ""

    @classmethod
    def parse(cls, value: str, exit_code: int | None = None) -> LsfState:
        raw = value.strip()
        try:
            kind = LsfStateKind(raw.upper())
        except ValueError:
            kind = LsfStateKind.UNKNOWN
        return cls(kind=kind, exit_code=exit_code, raw=raw or "UNKNOWN")


SchedulerState = SlurmState | LsfState


@dataclass
class SchedulerRecord:
    """One job as reported by a scheduler's live queue or accounting."""

    job_id: str
    name: str
    state: SchedulerState
    source: RecordSource
    queue: str | None = None
    submit_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    exec_host: str | None = None
    cpu_count: int | None = None
    memory_limit_mb: int | None = None
    memory_used_mb: int | None = None
    time_limit_seconds: int | None = None
    comment: str | None = None

    @property
    def is_historical(self) -> bool:
        return self.source.is_historical


class WorkflowRecord(BaseModel):
    """One Snakemake metadata file, keyed by the job's declared output path."""

    model_config = ConfigDict(populate_by_name=True)

    output_path: str = ""
    rule: str = ""
    inputs: list[str] = Field(default_factory=list, alias="input")
    log: list[str] = Field(default_factory=list)
    params: list[str] = Field(default_factory=list)
    shell_command: str | None = Field(default=None, alias="shellcmd")
    incomplete: bool = False
    start_time: float | None = Field(default=None, alias="starttime")
    end_time: float | None = Field(default=None, alias="endtime")
    job_hash: int | None = None
    conda_env: str | None = None
    container_image: str | None = Field(default=None, alias="container_img_url")
    input_checksums: dict[str, str] = Field(default_factory=dict)

    @field_validator("rule", mode="before")
    @classmethod
    def _null_rule(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("inputs", "log", "params", mode="before")
    @classmethod
    def _null_list(cls, v: object) -> object:
        if v is None:
            return []
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    @field_validator("input_checksums", mode="before")
    @classmethod
    def _null_map(cls, v: object) -> object:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


__all__ = [
    "LsfState",
    "LsfStateKind",
    "RecordSource",
    "SchedulerRecord",
    "SchedulerState",
    "SchedulerType",
    "SlurmState",
    "SlurmStateKind",
    "WorkflowRecord",
]
