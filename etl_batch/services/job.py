"""
Job -- ordered sequence of chunk-oriented steps, plus the run-id incrementer.

Contract:
    ``Job.execute()`` runs its steps strictly in order within one job
    execution and records the outcome.  Steps that already COMPLETED in an
    earlier execution of the same job instance are skipped; a FAILED or
    STOPPED step resumes from its committed restart position.

Architecture: etl_batch/services.  Called by JobLauncher.

Invariants enforced:
    - A step never starts before its predecessor COMPLETED; the first
      FAILED step fails the job and no later step is touched.
    - The returned JobExecution is terminal (COMPLETED, FAILED or STOPPED).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Sequence

from etl_kernel.exceptions import describe_error
from etl_kernel.logging_config import LogContext, get_logger

from etl_batch.domain.types import BatchStatus, JobExecution, StepExecution
from etl_batch.services.repository import RUN_ID_KEY, JobRepository
from etl_batch.services.step import ChunkOrientedStep

logger = get_logger("batch.job")


class RunIdIncrementer:
    """Derive the next run's parameters by incrementing ``run.id``.

    Every launch through the incrementer names a new job instance, so
    repeated runs of one job definition never collide in the repository.
    """

    def __init__(self, key: str = RUN_ID_KEY):
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def get_next(self, parameters: dict[str, Any] | None) -> dict[str, Any]:
        params = dict(parameters or {})
        params[self._key] = int(params.get(self._key, 0)) + 1
        return params


class Job:
    """A named, ordered list of steps."""

    def __init__(
        self,
        name: str,
        steps: Sequence[ChunkOrientedStep],
        incrementer: RunIdIncrementer | None = None,
        restartable: bool = True,
    ):
        if not steps:
            raise ValueError(f"Job '{name}' needs at least one step")
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Job '{name}' has duplicate step names: {names}")
        self._name = name
        self._steps = tuple(steps)
        self._incrementer = incrementer
        self._restartable = restartable

    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> tuple[ChunkOrientedStep, ...]:
        return self._steps

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(step.name for step in self._steps)

    @property
    def incrementer(self) -> RunIdIncrementer | None:
        return self._incrementer

    @property
    def restartable(self) -> bool:
        return self._restartable

    def execute(
        self,
        job_execution: JobExecution,
        repository: JobRepository,
    ) -> JobExecution:
        """Run every step in order; return the final, terminal job execution."""
        clock = repository.clock
        execution = replace(
            job_execution,
            status=BatchStatus.STARTED,
            start_time=clock.now(),
        )
        repository.update_job_execution(execution)

        with LogContext.bind(
            job_name=self._name,
            job_execution_id=execution.execution_id,
            run_id=execution.run_id,
        ):
            logger.info(
                "job_started",
                extra={"steps": list(self.step_names)},
            )
            status = BatchStatus.COMPLETED
            exit_message = None
            predecessor: str | None = None
            try:
                for index, step in enumerate(self._steps):
                    outcome = self._handle_step(
                        step, index, predecessor, execution, repository,
                    )
                    if outcome.status == BatchStatus.STOPPED:
                        status = BatchStatus.STOPPED
                        exit_message = outcome.exit_message
                        break
                    predecessor = step.name
            except Exception as exc:
                status = BatchStatus.FAILED
                exit_message = describe_error(exc)

            execution = replace(
                execution,
                status=status,
                end_time=clock.now(),
                exit_message=exit_message,
            )
            repository.update_job_execution(execution)

            if status == BatchStatus.FAILED:
                logger.error("job_failed", extra={"exit_message": exit_message})
            elif status == BatchStatus.STOPPED:
                logger.info("job_stopped")
            else:
                logger.info("job_completed")

        return repository.get_job_execution(execution.execution_id)

    def _handle_step(
        self,
        step: ChunkOrientedStep,
        index: int,
        predecessor: str | None,
        job_execution: JobExecution,
        repository: JobRepository,
    ) -> StepExecution:
        last = repository.get_last_step_execution(
            job_execution.job_instance_id, step.name,
        )
        if last is not None and last.status == BatchStatus.COMPLETED:
            if not step.allow_start_if_complete:
                logger.info(
                    "step_skipped",
                    extra={
                        "step_name": step.name,
                        "completed_in": last.job_execution_id,
                    },
                )
                return last
            restart_position = 0
        else:
            restart_position = last.restart_position if last is not None else 0

        step_execution = repository.start_step(
            job_execution,
            step.name,
            step_index=index,
            predecessor=predecessor,
            restart_position=restart_position,
        )
        with LogContext.bind(step_name=step.name):
            return step.execute(step_execution, repository)
