"""Tests for charmer.state.merge.

Covers per-source merge rules, provenance monotonicity, idempotence and
target-rule handling from the main log.
"""

from __future__ import annotations

from datetime import timedelta

from charmer.failure.models import ExitCode, FailureAnalysis
from charmer.state.correlation import correlate_jobs
from charmer.state.merge import (
    apply_log_info,
    attach_failure_analyses,
    merge_scheduler_records,
    merge_workflow_records,
)
from charmer.state.models import JobStatus, PipelineState, target_job_id
from charmer.state.records import RecordSource
from charmer.workflow.main_log import LogInfo, parse_log_content
from tests.helpers import T0, lsf_record, slurm_record, workflow_record


def _comparable(state: PipelineState) -> dict:
    data = state.model_dump()
    data.pop("last_updated")
    return data


# ─── Workflow metadata ────────────────────────────────────────────────


class TestMergeWorkflow:
    def test_insert_completed(self):
        state = PipelineState()
        result = merge_workflow_records(
            state,
            [workflow_record(start_time=T0.timestamp(), end_time=T0.timestamp() + 60)],
        )
        assert result.inserted == 1
        job = state.jobs["results/A.bam"]
        assert job.status is JobStatus.COMPLETED
        assert job.timing.started_at == T0
        assert job.timing.completed_at == T0 + timedelta(seconds=60)
        assert job.outputs == ["results/A.bam"]
        assert job.data_sources.workflow_metadata
        assert job.is_workflow_job

    def test_incomplete_is_running_and_has_no_completion(self):
        state = PipelineState()
        merge_workflow_records(
            state,
            [workflow_record(incomplete=True, start_time=T0.timestamp(), end_time=T0.timestamp())],
        )
        job = state.jobs["results/A.bam"]
        assert job.status is JobStatus.RUNNING
        assert job.timing.completed_at is None

    def test_wildcards_guessed_from_output_name(self):
        state = PipelineState()
        merge_workflow_records(state, [workflow_record("calls/S1_chr2.vcf", rule="call")])
        assert state.jobs["calls/S1_chr2.vcf"].wildcards == "sample=S1, chrom=chr2"

    def test_scheduler_wildcards_win_after_correlation(self):
        state = PipelineState()
        merge_workflow_records(
            state, [workflow_record("results/A.bam", start_time=T0.timestamp())]
        )
        merge_scheduler_records(
            state,
            [slurm_record(comment="rule_align_wildcards_sample=A,lane=2", start_time=T0)],
        )
        correlate_jobs(state)
        merge_workflow_records(
            state, [workflow_record("results/A.bam", start_time=T0.timestamp())]
        )
        job = state.get_job("results/A.bam")
        assert job is not None
        assert job.wildcards == "sample=A,lane=2"

    def test_no_times_is_pending(self):
        state = PipelineState()
        merge_workflow_records(state, [workflow_record()])
        assert state.jobs["results/A.bam"].status is JobStatus.PENDING

    def test_content_fields(self):
        state = PipelineState()
        merge_workflow_records(
            state,
            [
                workflow_record(
                    inputs=["data/A.fq"],
                    shell_command="bwa mem",
                    log=["logs/A.log"],
                    conda_env="envs/bwa.yaml",
                )
            ],
        )
        job = state.jobs["results/A.bam"]
        assert job.inputs == ["data/A.fq"]
        assert job.shell_command == "bwa mem"
        assert job.log_files == ["logs/A.log"]
        assert job.conda_env == "envs/bwa.yaml"

    def test_update_keeps_status_when_scheduler_reported(self):
        state = PipelineState()
        merge_workflow_records(state, [workflow_record(incomplete=True, start_time=1.0)])
        job = state.jobs["results/A.bam"]
        job.data_sources.mark(RecordSource.SLURM_SQUEUE)
        job.status = JobStatus.FAILED
        merge_workflow_records(state, [workflow_record(incomplete=True, start_time=1.0)])
        assert state.jobs["results/A.bam"].status is JobStatus.FAILED

    def test_update_status_without_scheduler(self):
        state = PipelineState()
        merge_workflow_records(state, [workflow_record(incomplete=True, start_time=1.0)])
        merge_workflow_records(state, [workflow_record(start_time=1.0, end_time=2.0)])
        assert state.jobs["results/A.bam"].status is JobStatus.COMPLETED

    def test_idempotent(self):
        state = PipelineState()
        batch = [
            workflow_record("a", start_time=1.0, end_time=2.0),
            workflow_record("b", rule="sort", incomplete=True, start_time=3.0),
        ]
        merge_workflow_records(state, batch)
        first = _comparable(state)
        merge_workflow_records(state, batch)
        assert _comparable(state) == first

    def test_alias_routes_to_survivor(self):
        state = PipelineState()
        merge_workflow_records(state, [workflow_record("x")])
        state.aliases["results/A.bam"] = "x"
        result = merge_workflow_records(state, [workflow_record("results/A.bam")])
        assert result.updated == 1
        assert "results/A.bam" not in state.jobs
        assert state.jobs["x"].outputs == ["x", "results/A.bam"]


# ─── Scheduler records ───────────────────────────────────────────────


class TestMergeScheduler:
    def test_insert_from_squeue(self):
        state = PipelineState()
        merge_scheduler_records(
            state,
            [
                slurm_record(
                    "1001",
                    state="RUNNING",
                    queue="short",
                    submit_time=T0,
                    start_time=T0 + timedelta(seconds=5),
                    cpu_count=4,
                    memory_limit_mb=8000,
                    time_limit_seconds=3600,
                    exec_host="node01",
                )
            ],
        )
        job = state.jobs["align[sample=A]"]
        assert job.rule == "align"
        assert job.wildcards == "sample=A"
        assert job.status is JobStatus.RUNNING
        assert job.scheduler_job_id == "1001"
        assert job.timing.queued_at == T0
        assert job.resources.cpus == 4
        assert job.resources.memory_mb == 8000
        assert job.resources.partition == "short"
        assert job.resources.node == "node01"
        assert job.data_sources.slurm_squeue
        assert job.is_workflow_job

    def test_run_uuid_learned_from_first_name(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(name="abc-123")])
        merge_scheduler_records(state, [slurm_record("2", name="other")])
        assert state.run_uuid == "abc-123"

    def test_status_and_error_last_write_wins(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(state="RUNNING")])
        merge_scheduler_records(
            state,
            [slurm_record(state="FAILED", exit_code=1, source=RecordSource.SLURM_SACCT)],
        )
        job = state.jobs["align[sample=A]"]
        assert job.status is JobStatus.FAILED
        assert job.error is not None
        assert job.error.exit_code == 1

    def test_queued_at_first_write_wins(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(submit_time=T0)])
        merge_scheduler_records(state, [slurm_record(submit_time=T0 + timedelta(hours=1))])
        assert state.jobs["align[sample=A]"].timing.queued_at == T0

    def test_start_not_cleared_by_missing_value(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(start_time=T0)])
        merge_scheduler_records(state, [slurm_record(start_time=None)])
        assert state.jobs["align[sample=A]"].timing.started_at == T0

    def test_usage_from_accounting(self):
        state = PipelineState()
        merge_scheduler_records(
            state,
            [
                lsf_record(
                    state="DONE",
                    source=RecordSource.LSF_BHIST,
                    start_time=T0,
                    end_time=T0 + timedelta(minutes=10),
                    memory_used_mb=2048,
                )
            ],
        )
        usage = state.jobs["align[sample=A]"].usage
        assert usage is not None
        assert usage.max_rss_mb == 2048
        assert usage.elapsed_seconds == 600

    def test_provenance_flags_only_accumulate(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(source=RecordSource.SLURM_SQUEUE)])
        merge_scheduler_records(
            state, [slurm_record(state="COMPLETED", source=RecordSource.SLURM_SACCT)]
        )
        merge_scheduler_records(state, [slurm_record(source=RecordSource.SLURM_SQUEUE)])
        sources = state.jobs["align[sample=A]"].data_sources
        assert sources.slurm_squeue
        assert sources.slurm_sacct

    def test_non_snakemake_job(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(comment=None, name="jupyter")])
        job = state.jobs["jupyter"]
        assert not job.is_workflow_job

    def test_idempotent(self):
        state = PipelineState()
        batch = [
            slurm_record("1", state="RUNNING", start_time=T0),
            slurm_record("2", state="PENDING", comment="rule_sort_wildcards_sample=B"),
        ]
        merge_scheduler_records(state, batch)
        first = _comparable(state)
        merge_scheduler_records(state, batch)
        assert _comparable(state) == first

    def test_last_updated_monotonic(self):
        state = PipelineState(last_updated=T0 - timedelta(days=1))
        merge_scheduler_records(state, [slurm_record()], now=T0 + timedelta(hours=1))
        merge_scheduler_records(state, [slurm_record()], now=T0)
        assert state.last_updated == T0 + timedelta(hours=1)


# ─── Main log ────────────────────────────────────────────────────────


class TestApplyLogInfo:
    def test_totals_and_host(self):
        state = PipelineState()
        info = LogInfo(total_jobs=12, jobs_by_rule={"align": 10, "all": 1}, cores=8, host="login1")
        apply_log_info(state, info)
        assert state.total_jobs == 12
        assert state.rule_totals == {"align": 10, "all": 1}
        assert state.cores == 8
        assert state.host == "login1"

    def test_target_rule_created_pending(self):
        state = PipelineState()
        apply_log_info(state, LogInfo(target_rules={"all"}))
        job = state.jobs[target_job_id("all")]
        assert job.is_target_rule
        assert job.status is JobStatus.PENDING

    def test_target_rule_completed_when_finished(self):
        state = PipelineState()
        apply_log_info(state, LogInfo(target_rules={"all"}))
        apply_log_info(state, LogInfo(target_rules={"all"}, finished=True), now=T0)
        job = state.jobs[target_job_id("all")]
        assert job.status is JobStatus.COMPLETED
        assert job.timing.completed_at == T0

    def test_target_rule_failed_with_errors(self):
        state = PipelineState()
        info = LogInfo(
            target_rules={"all"},
            finished=True,
            has_errors=True,
            errors=["Error in rule align:"],
        )
        apply_log_info(state, info)
        assert state.jobs[target_job_id("all")].status is JobStatus.FAILED
        assert state.pipeline_errors[0].rule == "align"

    def test_existing_outputless_job_marked_target(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(comment="rule_all", state="PENDING")])
        apply_log_info(state, LogInfo(target_rules={"all"}, finished=True))
        job = state.jobs["all"]
        assert job.is_target_rule
        assert job.status is JobStatus.COMPLETED
        assert target_job_id("all") not in state.jobs

    def test_target_status_not_overwritten_by_metadata(self):
        state = PipelineState()
        apply_log_info(state, LogInfo(target_rules={"all"}, finished=True))
        target = target_job_id("all")
        merge_workflow_records(state, [workflow_record(target, rule="all", incomplete=True)])
        assert state.jobs[target].status is JobStatus.COMPLETED

    def test_errors_cleared_by_clean_log(self):
        state = PipelineState()
        apply_log_info(
            state,
            LogInfo(target_rules={"all"}, finished=True, errors=["Error in rule align:"]),
        )
        assert state.pipeline_errors

        apply_log_info(state, LogInfo(target_rules={"all"}, finished=True), now=T0)
        assert state.pipeline_errors == []
        assert state.jobs[target_job_id("all")].status is JobStatus.COMPLETED

    def test_totals_replaced_by_newer_log(self):
        state = PipelineState()
        apply_log_info(state, LogInfo(total_jobs=12, jobs_by_rule={"align": 10, "all": 1}))
        apply_log_info(state, LogInfo(total_jobs=3, jobs_by_rule={"sort": 2, "all": 1}))
        assert state.total_jobs == 3
        assert state.rule_totals == {"sort": 2, "all": 1}

    def test_stale_target_rule_retracted(self):
        state = PipelineState()
        apply_log_info(state, LogInfo(target_rules={"align"}))
        assert target_job_id("align") in state.jobs

        apply_log_info(state, LogInfo(target_rules={"all"}))
        assert target_job_id("align") not in state.jobs
        assert "align" not in state.jobs_by_rule
        assert state.jobs[target_job_id("all")].is_target_rule

    def test_stale_target_flag_cleared_on_real_job(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(comment="rule_all", state="PENDING")])
        apply_log_info(state, LogInfo(target_rules={"all"}))
        assert state.jobs["all"].is_target_rule

        apply_log_info(state, LogInfo())
        assert not state.jobs["all"].is_target_rule
        assert "all" in state.jobs

    def test_partially_written_block_does_not_leave_target(self):
        state = PipelineState()
        apply_log_info(state, parse_log_content("rule align:\n    input: data/A.fq\n"))
        assert target_job_id("align") in state.jobs

        full = "rule align:\n    input: data/A.fq\n    output: results/A.bam\n"
        apply_log_info(state, parse_log_content(full))
        assert target_job_id("align") not in state.jobs
        assert not any(job.is_target_rule for job in state.jobs.values())

    def test_rerun_log_clears_failed_target(self):
        state = PipelineState()
        failed = "localrule all:\n    input: results/A.bam\n\nError in rule align:\n"
        apply_log_info(state, parse_log_content(failed + "1 of 3 steps (33%) done\n"))
        clean = "localrule all:\n    input: results/A.bam\n\n3 of 3 steps (100%) done\n"
        apply_log_info(state, parse_log_content(clean))

        assert state.pipeline_errors == []
        assert state.jobs[target_job_id("all")].status is JobStatus.COMPLETED


class TestAttachAnalyses:
    def _analysis(self, job_id: str) -> FailureAnalysis:
        return FailureAnalysis(
            job_id=job_id,
            scheduler="slurm",
            mode=ExitCode(code=1),
            explanation="Job failed with exit code 1 (general error)",
            suggestion="Check the job's stderr log for error details.",
        )

    def test_attach_by_alias(self):
        state = PipelineState()
        merge_scheduler_records(state, [slurm_record(state="FAILED", exit_code=1)])
        state.aliases["results/A.bam"] = "align[sample=A]"
        attached = attach_failure_analyses(state, [("results/A.bam", self._analysis("1001"))])
        assert attached == 1
        assert state.jobs["align[sample=A]"].failure_analysis is not None

    def test_orphan_ignored(self):
        state = PipelineState()
        assert attach_failure_analyses(state, [("nope", self._analysis("1"))]) == 0
