"""Shared record builders for charmer tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from charmer.failure.models import ExitCode, FailureAnalysis
from charmer.state.records import (
    LsfState,
    RecordSource,
    SchedulerRecord,
    SlurmState,
    WorkflowRecord,
)
from charmer.workflow.metadata import METADATA_SUBDIR, encode_metadata_filename

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


RUNNING_LOG = """\
host: login1
Building DAG of jobs...
Using shell: /usr/bin/bash
Provided cores: 16
Job stats:
job       count
------  -------
align         2
all           1
total         3

Select jobs to execute...

[Fri Mar  1 12:00:00 2024]
rule align:
    input: data/A.fq
    output: results/A.bam
    jobid: 1
    wildcards: sample=A
    resources: tmpdir=/tmp

[Fri Mar  1 12:01:00 2024]
Finished job 1.
1 of 3 steps (33%) done
"""


def slurm_record(
    job_id: str = "1001",
    *,
    state: str = "RUNNING",
    exit_code: int | None = None,
    comment: str | None = "rule_align_wildcards_sample=A",
    name: str = "run-uuid-1",
    source: RecordSource = RecordSource.SLURM_SQUEUE,
    **kwargs: object,
) -> SchedulerRecord:
    return SchedulerRecord(
        job_id=job_id,
        name=name,
        state=SlurmState.parse(state, exit_code=exit_code),
        source=source,
        comment=comment,
        **kwargs,  # type: ignore[arg-type]
    )


def lsf_record(
    job_id: str = "2001",
    *,
    state: str = "RUN",
    exit_code: int | None = None,
    comment: str | None = "rule_align_wildcards_sample=A",
    name: str = "run-uuid-1",
    source: RecordSource = RecordSource.LSF_BJOBS,
    **kwargs: object,
) -> SchedulerRecord:
    return SchedulerRecord(
        job_id=job_id,
        name=name,
        state=LsfState.parse(state, exit_code=exit_code),
        source=source,
        comment=comment,
        **kwargs,  # type: ignore[arg-type]
    )


def workflow_record(
    output_path: str = "results/A.bam",
    *,
    rule: str = "align",
    incomplete: bool = False,
    start_time: float | None = None,
    end_time: float | None = None,
    **kwargs: object,
) -> WorkflowRecord:
    return WorkflowRecord(
        output_path=output_path,
        rule=rule,
        incomplete=incomplete,
        start_time=start_time,
        end_time=end_time,
        **kwargs,  # type: ignore[arg-type]
    )


def write_metadata(workdir: Path, output_path: str, data: dict) -> Path:
    """Write a Snakemake metadata file for ``output_path`` under ``workdir``."""
    directory = workdir / METADATA_SUBDIR
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / encode_metadata_filename(output_path)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def exit_analysis(job_id: str = "1001", code: int = 1) -> FailureAnalysis:
    return FailureAnalysis(
        job_id=job_id,
        scheduler="slurm",
        mode=ExitCode(code=code),
        explanation=f"Job failed with exit code {code}",
        suggestion="Check the job's stderr log for error details.",
        raw_state="FAILED",
    )


def write_main_log(
    workdir: Path,
    content: str,
    name: str = "2024-03-01T120000.000000.snakemake.log",
) -> Path:
    """Write a Snakemake main log under ``workdir/.snakemake/log``."""
    directory = workdir / ".snakemake" / "log"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path
