"""Tests for charmer.state.models and charmer.state.records."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from charmer.state.environment import EnvironmentKind, ExecutionEnvironment
from charmer.state.models import (
    DataSources,
    Job,
    JobStatus,
    JobTiming,
    PipelineState,
    target_job_id,
)
from charmer.state.records import (
    LsfState,
    LsfStateKind,
    RecordSource,
    SchedulerType,
    SlurmState,
    SlurmStateKind,
    WorkflowRecord,
)
from tests.helpers import T0


# ─── Records ──────────────────────────────────────────────────────────


class TestSlurmState:
    """Tests for SlurmState.parse."""

    def test_plain_state(self):
        state = SlurmState.parse("RUNNING")
        assert state.kind is SlurmStateKind.RUNNING
        assert state.raw == "RUNNING"

    def test_cancelled_by_user(self):
        state = SlurmState.parse("CANCELLED by 12345")
        assert state.kind is SlurmStateKind.CANCELLED
        assert state.raw == "CANCELLED by 12345"

    def test_trailing_plus_stripped(self):
        assert SlurmState.parse("CANCELLED+").kind is SlurmStateKind.CANCELLED

    def test_unknown_keeps_raw(self):
        state = SlurmState.parse("REQUEUED")
        assert state.kind is SlurmStateKind.UNKNOWN
        assert state.raw == "REQUEUED"

    def test_empty(self):
        state = SlurmState.parse("")
        assert state.kind is SlurmStateKind.UNKNOWN
        assert state.raw == "UNKNOWN"

    def test_exit_code_carried(self):
        assert SlurmState.parse("FAILED", exit_code=3).exit_code == 3


class TestLsfState:
    """Tests for LsfState.parse."""

    @pytest.mark.parametrize("value", ["PEND", "RUN", "DONE", "EXIT", "PSUSP", "ZOMBI"])
    def test_known_states(self, value: str):
        assert LsfState.parse(value).kind is LsfStateKind(value)

    def test_lowercase_accepted(self):
        assert LsfState.parse("run").kind is LsfStateKind.RUN

    def test_unknown(self):
        assert LsfState.parse("WAIT").kind is LsfStateKind.UNKNOWN


class TestRecordSource:
    def test_scheduler_flags(self):
        assert not RecordSource.WORKFLOW_METADATA.is_scheduler
        assert RecordSource.SLURM_SQUEUE.is_scheduler
        assert RecordSource.LSF_BHIST.is_historical
        assert not RecordSource.LSF_BJOBS.is_historical

    def test_for_scheduler(self):
        assert RecordSource.for_scheduler(SchedulerType.SLURM, False) is RecordSource.SLURM_SQUEUE
        assert RecordSource.for_scheduler(SchedulerType.SLURM, True) is RecordSource.SLURM_SACCT
        assert RecordSource.for_scheduler(SchedulerType.LSF, False) is RecordSource.LSF_BJOBS
        assert RecordSource.for_scheduler(SchedulerType.LSF, True) is RecordSource.LSF_BHIST


class TestWorkflowRecord:
    """Tests for WorkflowRecord validation of Snakemake metadata JSON."""

    def test_aliases(self):
        record = WorkflowRecord.model_validate({
            "rule": "align",
            "input": ["data/A.fq"],
            "shellcmd": "bwa mem ref.fa data/A.fq",
            "starttime": 1700000000.0,
            "endtime": 1700000100.0,
            "container_img_url": "docker://biocontainers/bwa",
        })
        assert record.inputs == ["data/A.fq"]
        assert record.shell_command == "bwa mem ref.fa data/A.fq"
        assert record.start_time == 1700000000.0
        assert record.end_time == 1700000100.0
        assert record.container_image == "docker://biocontainers/bwa"

    def test_nulls_become_empty(self):
        record = WorkflowRecord.model_validate({
            "rule": None,
            "input": None,
            "log": None,
            "params": None,
            "input_checksums": None,
        })
        assert record.rule == ""
        assert record.inputs == []
        assert record.log == []
        assert record.params == []
        assert record.input_checksums == {}
        assert record.output_path == ""

    def test_unknown_fields_ignored(self):
        record = WorkflowRecord.model_validate({"rule": "x", "version": None, "code": "abc"})
        assert record.rule == "x"


# ─── Model ────────────────────────────────────────────────────────────


class TestJobStatus:
    def test_terminal(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert JobStatus.CANCELLED.is_terminal
        assert not JobStatus.RUNNING.is_terminal
        assert not JobStatus.QUEUED.is_terminal


class TestDataSources:
    def test_mark_and_active(self):
        sources = DataSources()
        sources.mark(RecordSource.SLURM_SACCT)
        assert sources.slurm_sacct
        assert sources.active() == {RecordSource.SLURM_SACCT}
        assert sources.has_scheduler_data

    def test_metadata_only_has_no_scheduler_data(self):
        sources = DataSources(workflow_metadata=True)
        assert not sources.has_scheduler_data

    def test_union(self):
        a = DataSources(workflow_metadata=True)
        b = DataSources(lsf_bjobs=True)
        a.union(b)
        assert a.active() == {RecordSource.WORKFLOW_METADATA, RecordSource.LSF_BJOBS}


class TestJob:
    def test_runtime_completed(self):
        job = Job(
            id="x",
            rule="x",
            status=JobStatus.COMPLETED,
            timing=JobTiming(started_at=T0, completed_at=T0 + timedelta(seconds=90)),
        )
        assert job.runtime_seconds() == 90

    def test_runtime_running_uses_now(self):
        job = Job(id="x", rule="x", status=JobStatus.RUNNING, timing=JobTiming(started_at=T0))
        assert job.runtime_seconds(T0 + timedelta(minutes=2)) == 120

    def test_runtime_not_started(self):
        assert Job(id="x", rule="x").runtime_seconds() is None

    def test_runtime_none_for_stale_non_running(self):
        job = Job(id="x", rule="x", status=JobStatus.FAILED, timing=JobTiming(started_at=T0))
        assert job.runtime_seconds() is None

    def test_environment(self):
        job = Job(id="x", rule="x", shell_command="pixi run -e analysis python run.py")
        env = job.environment()
        assert env.kind is EnvironmentKind.PIXI
        assert env.name == "analysis"


class TestExecutionEnvironment:
    """Detection priority: image, container command, pixi, conda env, conda command."""

    def test_metadata_container_wins(self):
        env = ExecutionEnvironment.detect(
            "conda run -n base python x.py", conda_env="base", container_image="docker://img"
        )
        assert env == ExecutionEnvironment(EnvironmentKind.CONTAINER, "docker://img")

    def test_singularity_command(self):
        env = ExecutionEnvironment.detect("singularity exec /images/tool.sif tool --help")
        assert env.kind is EnvironmentKind.CONTAINER
        assert env.name == "/images/tool.sif"

    def test_pixi_beats_metadata_conda(self):
        env = ExecutionEnvironment.detect("pixi run --environment gpu train", conda_env="envs/x.yaml")
        assert env.kind is EnvironmentKind.PIXI

    def test_metadata_conda(self):
        env = ExecutionEnvironment.detect("python x.py", conda_env="envs/x.yaml")
        assert env == ExecutionEnvironment(EnvironmentKind.CONDA, "envs/x.yaml")

    def test_conda_activate_command(self):
        env = ExecutionEnvironment.detect("conda activate qc && fastqc x")
        assert env == ExecutionEnvironment(EnvironmentKind.CONDA, "qc")

    def test_direct(self):
        env = ExecutionEnvironment.detect("echo hi")
        assert env.kind is EnvironmentKind.DIRECT
        assert env.label() == "direct"


class TestPipelineState:
    """Tests for PipelineState index maintenance and derived views."""

    def test_add_and_remove_keeps_rule_index(self):
        state = PipelineState(working_directory=Path("/w"))
        state.add_job(Job(id="a", rule="align"))
        state.add_job(Job(id="b", rule="align"))
        assert state.jobs_by_rule == {"align": ["a", "b"]}
        state.remove_job("a")
        assert state.jobs_by_rule == {"align": ["b"]}
        state.remove_job("b")
        assert state.jobs_by_rule == {}
        assert state.remove_job("missing") is None

    def test_resolve_id_follows_chain(self):
        state = PipelineState()
        state.aliases = {"a": "b", "b": "c"}
        assert state.resolve_id("a") == "c"
        assert state.resolve_id("z") == "z"

    def test_resolve_id_cycle_terminates(self):
        state = PipelineState()
        state.aliases = {"a": "b", "b": "a"}
        assert state.resolve_id("a") in {"a", "b"}

    def test_touch_is_monotonic(self):
        state = PipelineState(last_updated=T0)
        state.touch(T0 + timedelta(hours=1))
        state.touch(T0)
        assert state.last_updated == T0 + timedelta(hours=1)

    def test_snapshot_is_independent(self):
        state = PipelineState()
        state.add_job(Job(id="a", rule="align"))
        snap = state.snapshot()
        state.jobs["a"].status = JobStatus.FAILED
        assert snap.jobs["a"].status is JobStatus.PENDING

    def test_job_counts(self):
        state = PipelineState()
        state.add_job(Job(id="a", rule="r", status=JobStatus.RUNNING))
        state.add_job(Job(id="b", rule="r", status=JobStatus.COMPLETED))
        state.add_job(Job(id="c", rule="r", status=JobStatus.COMPLETED))
        counts = state.job_counts()
        assert counts.total == 3
        assert counts.running == 1
        assert counts.completed == 2
        assert counts.as_dict()["failed"] == 0

    def test_target_job_id(self):
        assert target_job_id("all") == "__target_all__"


class TestEta:
    def _completed(self, job_id: str, seconds: int) -> Job:
        return Job(
            id=job_id,
            rule="r",
            status=JobStatus.COMPLETED,
            timing=JobTiming(started_at=T0, completed_at=T0 + timedelta(seconds=seconds)),
        )

    def test_no_completed_jobs(self):
        state = PipelineState()
        state.add_job(Job(id="a", rule="r", status=JobStatus.RUNNING))
        assert state.estimate_eta() is None

    def test_serial_estimate(self):
        state = PipelineState(total_jobs=20)
        for i in range(3):
            state.add_job(self._completed(f"c{i}", 100))
        state.add_job(Job(id="r", rule="r", status=JobStatus.RUNNING))
        eta = state.estimate_eta()
        assert eta is not None
        # 17 remaining: the running job counts half, the other 16 in full
        assert eta.seconds == 50 + 1600
        assert not eta.reliable

    def test_reliable_after_a_fifth(self):
        state = PipelineState(total_jobs=10)
        for i in range(4):
            state.add_job(self._completed(f"c{i}", 60))
        eta = state.estimate_eta()
        assert eta is not None
        assert eta.reliable
        assert eta.seconds == 6 * 60
