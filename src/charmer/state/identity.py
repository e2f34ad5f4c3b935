"""Canonical job identity.

Every producer record is turned into a ``JobIdentity`` here, at ingestion,
so the merge paths never invent keys of their own.

Scheduler jobs submitted by Snakemake carry ``rule_<NAME>`` or
``rule_<NAME>_wildcards_<PARAMS>`` in their comment (SLURM) or job
description (LSF); their id is ``NAME[PARAMS]`` or bare ``NAME``.  Anything
else falls back to the scheduler's job name.  Workflow metadata has no
comment and is keyed by its declared output path; the correlation pass
links the two schemes when both describe the same job.  Its wildcards are
guessed from the output file name and only ever displayed.
"""

from __future__ import annotations

from dataclasses import dataclass

from charmer.state.records import SchedulerRecord, WorkflowRecord

RULE_PREFIX = "rule_"
WILDCARDS_SEPARATOR = "_wildcards_"


@dataclass(frozen=True)
class JobIdentity:
    job_id: str
    rule: str
    wildcards: str | None
    is_workflow_job: bool


def parse_comment(comment: str) -> tuple[str, str | None] | None:
    """Split a Snakemake job comment into ``(rule, wildcards)``.

    Returns None when the comment does not follow the naming convention.
    An empty wildcards part is treated as no wildcards.

    >>> parse_comment("rule_align_wildcards_sample=A")
    ('align', 'sample=A')
    >>> parse_comment("rule_all")
    ('all', None)
    """
    comment = comment.strip()
    if not comment.startswith(RULE_PREFIX):
        return None
    rest = comment[len(RULE_PREFIX):]
    rule, sep, wildcards = rest.partition(WILDCARDS_SEPARATOR)
    if not rule:
        return None
    if not sep or not wildcards:
        return rule, None
    return rule, wildcards


def make_job_id(rule: str, wildcards: str | None) -> str:
    if wildcards:
        return f"{rule}[{wildcards}]"
    return rule


def guess_wildcards(output_path: str) -> str | None:
    """Best-effort wildcards for a metadata-only job, read off its output name.

    Metadata files do not record wildcards, so this is for display only and
    never feeds a job id.  ``results/S1_chr2.vcf`` gives
    ``sample=S1, chrom=chr2``; a top-level file or a name with more than
    one ``_`` gives None.

    >>> guess_wildcards("results/A.bam")
    'sample=A'
    >>> guess_wildcards("calls/S1_q30.vcf")
    'sample=S1, var=q30'
    """
    directory, _, filename = output_path.rpartition("/")
    if not directory:
        return None
    base = filename.split(".", 1)[0]
    if not base:
        return None
    segments = base.split("_")
    if len(segments) == 1:
        return f"sample={base}"
    if len(segments) != 2 or not all(segments):
        return None
    sample, other = segments
    key = "chrom" if other.startswith("chr") else "var"
    return f"sample={sample}, {key}={other}"


def scheduler_identity(record: SchedulerRecord) -> JobIdentity:
    parsed = parse_comment(record.comment) if record.comment else None
    if parsed is None:
        return JobIdentity(
            job_id=record.name,
            rule=record.name,
            wildcards=None,
            is_workflow_job=False,
        )
    rule, wildcards = parsed
    return JobIdentity(
        job_id=make_job_id(rule, wildcards),
        rule=rule,
        wildcards=wildcards,
        is_workflow_job=True,
    )


def workflow_identity(record: WorkflowRecord) -> JobIdentity:
    return JobIdentity(
        job_id=record.output_path,
        rule=record.rule,
        wildcards=guess_wildcards(record.output_path),
        is_workflow_job=True,
    )


__all__ = [
    "JobIdentity",
    "guess_wildcards",
    "make_job_id",
    "parse_comment",
    "scheduler_identity",
    "workflow_identity",
]
