"""
Tests for JobLauncher and BatchOrchestrator: run, launch_next with the
run-id incrementer, explicit restart and launch-time rejections.
"""

import pytest

from etl_kernel.domain.clock import DeterministicClock
from etl_kernel.exceptions import (
    DuplicateRunError,
    JobExecutionNotFoundError,
    JobRestartError,
)
from etl_batch.domain.types import BatchStatus
from etl_batch.orchestrator import BatchOrchestrator
from etl_batch.services.job import Job, RunIdIncrementer
from etl_batch.services.launcher import JobLauncher
from etl_batch.services.repository import JobRepository
from etl_batch.services.step import ChunkOrientedStep

from batch_doubles import ListItemReader, RecordingWriter


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def job(writer):
    step = ChunkOrientedStep("numbers", ListItemReader(range(5)), writer, chunk_size=2)
    return Job("numbers", [step], incrementer=RunIdIncrementer())


# =============================================================================
# run
# =============================================================================


class TestRun:
    def test_run_completes(self, launcher, job, writer):
        execution = launcher.run(job, {"source": "a"})
        assert execution.status == BatchStatus.COMPLETED
        assert execution.parameters == {"source": "a"}
        assert writer.items == [0, 1, 2, 3, 4]

    def test_same_parameters_after_success_rejected(self, launcher, job):
        launcher.run(job, {"source": "a"})
        with pytest.raises(DuplicateRunError):
            launcher.run(job, {"source": "a"})

    def test_step_failure_returns_failed_execution(self, launcher, job, writer):
        writer.fail_on_call = 2
        execution = launcher.run(job)
        assert execution.status == BatchStatus.FAILED
        assert execution.exit_message.startswith("SINK_WRITE_ERROR")

    def test_job_launched_logged(self, launcher, job, captured_logs):
        launcher.run(job, {"run.id": 1})
        launched = next(r for r in captured_logs() if r["message"] == "job_launched")
        assert launched["job_name"] == "numbers"


# =============================================================================
# launch_next
# =============================================================================


class TestLaunchNext:
    def test_first_launch_gets_run_id_one(self, launcher, job):
        execution = launcher.launch_next(job, {"source": "a"})
        assert execution.run_id == 1
        assert execution.parameters == {"run.id": 1, "source": "a"}

    def test_after_success_increments_run_id(self, launcher, job, writer):
        first = launcher.launch_next(job, {"source": "a"})
        second = launcher.launch_next(job, {"source": "a"})

        assert first.status == second.status == BatchStatus.COMPLETED
        assert second.run_id == 2
        assert second.job_instance_id != first.job_instance_id
        assert writer.items == [0, 1, 2, 3, 4] * 2

    def test_after_failure_restarts_same_instance(self, launcher, job, writer):
        writer.fail_on_call = 2
        failed = launcher.launch_next(job, {"source": "a"})
        assert failed.status == BatchStatus.FAILED

        writer.fail_on_call = None
        resumed = launcher.launch_next(job, {"source": "a"})

        assert resumed.status == BatchStatus.COMPLETED
        assert resumed.run_id == 1
        assert resumed.job_instance_id == failed.job_instance_id
        assert writer.items == [0, 1, 2, 3, 4]

    def test_after_failure_with_new_parameters_starts_new_run(
        self, launcher, job, writer,
    ):
        writer.fail_on_call = 1
        failed = launcher.launch_next(job, {"source": "a"})

        writer.fail_on_call = None
        fresh = launcher.launch_next(job, {"source": "b"})

        assert fresh.run_id == 2
        assert fresh.job_instance_id != failed.job_instance_id
        assert fresh.parameters == {"run.id": 2, "source": "b"}

    def test_without_parameters(self, launcher, job):
        assert launcher.launch_next(job).parameters == {"run.id": 1}
        assert launcher.launch_next(job).parameters == {"run.id": 2}

    def test_job_without_incrementer_behaves_like_run(self, launcher, writer):
        plain = Job(
            "plain", [ChunkOrientedStep("s", ListItemReader([1]), writer)],
        )
        execution = launcher.launch_next(plain, {"source": "a"})
        assert execution.run_id is None
        assert execution.parameters == {"source": "a"}
        with pytest.raises(DuplicateRunError):
            launcher.launch_next(plain, {"source": "a"})


# =============================================================================
# restart / stop
# =============================================================================


class TestRestart:
    def test_restart_failed_execution(self, launcher, job, writer):
        writer.fail_on_call = 3
        failed = launcher.run(job, {"source": "a"})

        writer.fail_on_call = None
        resumed = launcher.restart(job, failed.execution_id)

        assert resumed.status == BatchStatus.COMPLETED
        assert resumed.job_instance_id == failed.job_instance_id
        assert writer.items == [0, 1, 2, 3, 4]
        assert writer.opened == [0, 4]

    def test_restart_completed_execution_rejected(self, launcher, job):
        done = launcher.run(job)
        with pytest.raises(JobRestartError, match="completed"):
            launcher.restart(job, done.execution_id)

    def test_restart_other_job_rejected(self, launcher, job, writer):
        writer.fail_on_call = 1
        failed = launcher.run(job)
        other = Job("other", [ChunkOrientedStep("s", ListItemReader([]), writer)])
        with pytest.raises(JobRestartError, match="belongs to job"):
            launcher.restart(other, failed.execution_id)

    def test_restart_unknown_execution(self, launcher, job):
        with pytest.raises(JobExecutionNotFoundError):
            launcher.restart(job, 999)

    def test_non_restartable_job(self, launcher, writer):
        writer.fail_on_call = 1
        once = Job(
            "once",
            [ChunkOrientedStep("s", ListItemReader([1]), writer)],
            restartable=False,
        )
        launcher.run(once)
        with pytest.raises(JobRestartError):
            launcher.run(once)


# =============================================================================
# BatchOrchestrator
# =============================================================================


class TestBatchOrchestrator:
    def test_from_engine_wires_shared_clock(self, engine):
        clock = DeterministicClock()
        orchestrator = BatchOrchestrator.from_engine(engine, clock=clock)

        assert isinstance(orchestrator.repository, JobRepository)
        assert isinstance(orchestrator.launcher, JobLauncher)
        assert orchestrator.repository.clock is clock
        assert orchestrator.launcher.repository is orchestrator.repository

    def test_initialize_schema_is_idempotent(self, engine):
        orchestrator = BatchOrchestrator.from_engine(engine)
        orchestrator.initialize_schema()
        orchestrator.initialize_schema()

    def test_launch_runs_next_instance(self, engine, job):
        orchestrator = BatchOrchestrator.from_engine(engine, clock=DeterministicClock())
        execution = orchestrator.launch(job, {"source": "a"})
        assert execution.status == BatchStatus.COMPLETED
        assert execution.run_id == 1
