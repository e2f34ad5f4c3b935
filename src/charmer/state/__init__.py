"""Unified pipeline state: data model, producer records, identity, status maps.

Merge entry points live in ``charmer.state.merge`` and are normally reached
through ``charmer.state.store.StateStore``.
"""

from charmer.state.environment import EnvironmentKind, ExecutionEnvironment
from charmer.state.identity import JobIdentity, make_job_id, parse_comment
from charmer.state.models import (
    DataSources,
    EtaEstimate,
    Job,
    JobCounts,
    JobError,
    JobResources,
    JobStatus,
    JobTiming,
    PipelineError,
    PipelineErrorKind,
    PipelineState,
    ResourceUsage,
)
from charmer.state.records import (
    LsfState,
    RecordSource,
    SchedulerRecord,
    SchedulerType,
    SlurmState,
    WorkflowRecord,
)

__all__ = [
    "DataSources",
    "EnvironmentKind",
    "EtaEstimate",
    "ExecutionEnvironment",
    "Job",
    "JobCounts",
    "JobError",
    "JobIdentity",
    "JobResources",
    "JobStatus",
    "JobTiming",
    "LsfState",
    "PipelineError",
    "PipelineErrorKind",
    "PipelineState",
    "RecordSource",
    "ResourceUsage",
    "SchedulerRecord",
    "SchedulerType",
    "SlurmState",
    "WorkflowRecord",
    "make_job_id",
    "parse_comment",
]
