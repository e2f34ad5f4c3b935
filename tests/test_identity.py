"""Tests for charmer.state.identity and charmer.state.status_map."""

from __future__ import annotations

import pytest

from charmer.state.identity import (
    guess_wildcards,
    make_job_id,
    parse_comment,
    scheduler_identity,
    workflow_identity,
)
from charmer.state.models import JobStatus
from charmer.state.records import LsfState, SlurmState
from charmer.state.status_map import map_lsf_state, map_scheduler_state, map_slurm_state
from tests.helpers import slurm_record, workflow_record


class TestParseComment:
    def test_rule_with_wildcards(self):
        assert parse_comment("rule_align_wildcards_sample=A") == ("align", "sample=A")

    def test_rule_only(self):
        assert parse_comment("rule_all") == ("all", None)

    def test_empty_wildcards(self):
        assert parse_comment("rule_qc_wildcards_") == ("qc", None)

    def test_rule_name_with_underscores(self):
        assert parse_comment("rule_call_variants_wildcards_chr=1,sample=B") == (
            "call_variants",
            "chr=1,sample=B",
        )

    @pytest.mark.parametrize("comment", ["", "align", "rule_", "job_rule_x"])
    def test_not_snakemake(self, comment: str):
        assert parse_comment(comment) is None


class TestIdentity:
    def test_make_job_id(self):
        assert make_job_id("align", "sample=A") == "align[sample=A]"
        assert make_job_id("all", None) == "all"

    def test_scheduler_identity_from_comment(self):
        identity = scheduler_identity(slurm_record(comment="rule_align_wildcards_sample=A"))
        assert identity.job_id == "align[sample=A]"
        assert identity.rule == "align"
        assert identity.wildcards == "sample=A"
        assert identity.is_workflow_job

    def test_scheduler_identity_falls_back_to_name(self):
        identity = scheduler_identity(slurm_record(comment=None, name="interactive"))
        assert identity.job_id == "interactive"
        assert identity.rule == "interactive"
        assert not identity.is_workflow_job

    def test_workflow_identity_is_output_path(self):
        identity = workflow_identity(workflow_record("results/A.bam", rule="align"))
        assert identity.job_id == "results/A.bam"
        assert identity.rule == "align"
        assert identity.is_workflow_job
        assert identity.wildcards == "sample=A"


class TestGuessWildcards:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("results/A.bam", "sample=A"),
            ("results/A.sorted.bam", "sample=A"),
            ("calls/S1_chr2.vcf.gz", "sample=S1, chrom=chr2"),
            ("calls/S1_q30.vcf", "sample=S1, var=q30"),
            ("calls/S1_q30_x.vcf", None),
            ("calls/S1_.vcf", None),
            ("summary.txt", None),
            ("results/.hidden", None),
        ],
    )
    def test_guess(self, path: str, expected: str | None):
        assert guess_wildcards(path) == expected


class TestStatusMap:
    """Every scheduler state maps to exactly one unified status."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("PENDING", JobStatus.QUEUED),
            ("RUNNING", JobStatus.RUNNING),
            ("COMPLETED", JobStatus.COMPLETED),
            ("FAILED", JobStatus.FAILED),
            ("CANCELLED by 42", JobStatus.CANCELLED),
            ("TIMEOUT", JobStatus.FAILED),
            ("OUT_OF_MEMORY", JobStatus.FAILED),
            ("NODE_FAIL", JobStatus.FAILED),
            ("SOMETHING_NEW", JobStatus.UNKNOWN),
        ],
    )
    def test_slurm(self, value: str, expected: JobStatus):
        status, _ = map_slurm_state(SlurmState.parse(value))
        assert status is expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("PEND", JobStatus.QUEUED),
            ("RUN", JobStatus.RUNNING),
            ("DONE", JobStatus.COMPLETED),
            ("EXIT", JobStatus.FAILED),
            ("PSUSP", JobStatus.PENDING),
            ("USUSP", JobStatus.PENDING),
            ("SSUSP", JobStatus.PENDING),
            ("ZOMBI", JobStatus.UNKNOWN),
        ],
    )
    def test_lsf(self, value: str, expected: JobStatus):
        status, _ = map_lsf_state(LsfState.parse(value))
        assert status is expected

    def test_slurm_failed_error_carries_exit_code(self):
        _, error = map_slurm_state(SlurmState.parse("FAILED", exit_code=2))
        assert error is not None
        assert error.exit_code == 2
        assert error.message == "Job failed with exit code 2"

    def test_slurm_timeout_error(self):
        _, error = map_slurm_state(SlurmState.parse("TIMEOUT"))
        assert error is not None
        assert error.exit_code == -1
        assert "time limit" in error.message

    def test_slurm_running_has_no_error(self):
        _, error = map_slurm_state(SlurmState.parse("RUNNING"))
        assert error is None

    def test_lsf_exit_error(self):
        status, error = map_scheduler_state(LsfState.parse("EXIT", exit_code=137))
        assert status is JobStatus.FAILED
        assert error is not None
        assert error.exit_code == 137

    def test_dispatch(self):
        assert map_scheduler_state(SlurmState.parse("RUNNING"))[0] is JobStatus.RUNNING
        assert map_scheduler_state(LsfState.parse("DONE"))[0] is JobStatus.COMPLETED
