"""
JobLauncher -- entry point that turns a job plus parameters into an execution.

Contract:
    ``run()`` creates a job execution for the instance named by the given
    parameters and executes the job synchronously.  ``launch_next()`` uses
    the job's incrementer: it restarts the last FAILED or STOPPED execution
    when the caller asks for the same parameters again, and otherwise moves
    to the next ``run.id``.

Architecture: etl_batch/services.  Uses JobRepository and Job.

Failure modes:
    - DuplicateRunError / JobExecutionAlreadyRunningError / JobRestartError
      raised at launch time; nothing is executed.
    - Errors inside steps do NOT propagate: the returned execution is FAILED
      and carries the exit message.
"""

from __future__ import annotations

from typing import Any

from etl_kernel.exceptions import JobRestartError
from etl_kernel.logging_config import get_logger

from etl_batch.domain.types import BatchStatus, JobExecution
from etl_batch.services.job import Job
from etl_batch.services.repository import JobRepository, normalize_parameters

logger = get_logger("batch.launcher")


class JobLauncher:
    """Launch, restart and stop jobs against one repository."""

    def __init__(self, repository: JobRepository):
        self._repository = repository

    @property
    def repository(self) -> JobRepository:
        return self._repository

    def run(self, job: Job, parameters: dict[str, Any] | None = None) -> JobExecution:
        """Execute ``job`` for the instance identified by ``parameters``."""
        execution = self._repository.create_job_execution(
            job.name, parameters, restartable=job.restartable,
        )
        logger.info(
            "job_launched",
            extra={
                "job_name": job.name,
                "job_execution_id": execution.execution_id,
                "run_id": execution.run_id,
            },
        )
        return job.execute(execution, self._repository)

    def launch_next(
        self, job: Job, parameters: dict[str, Any] | None = None,
    ) -> JobExecution:
        """Run the job's next instance, or restart its last unfinished one.

        The last execution of the job is restarted when it FAILED or STOPPED
        and its parameters, ``run.id`` aside, equal ``parameters``.
        Otherwise the incrementer derives a fresh ``run.id`` from the last
        execution's parameters and ``parameters`` are layered on top.
        A job without an incrementer is simply ``run()``.
        """
        incrementer = job.incrementer
        if incrementer is None:
            return self.run(job, parameters)
        requested = normalize_parameters(parameters)
        last = self._repository.get_last_job_execution(job.name)

        if last is not None and BatchStatus(last.status).is_restartable:
            previous = {k: v for k, v in last.parameters.items() if k != incrementer.key}
            wanted = {k: v for k, v in requested.items() if k != incrementer.key}
            if previous == wanted and requested.get(incrementer.key) in (
                None, last.parameters.get(incrementer.key),
            ):
                logger.info(
                    "job_restart_selected",
                    extra={
                        "job_name": job.name,
                        "job_execution_id": last.execution_id,
                        "run_id": last.run_id,
                    },
                )
                return self.run(job, last.parameters)

        base = last.parameters if last is not None else {}
        next_parameters = incrementer.get_next(base)
        next_parameters.update(
            {k: v for k, v in requested.items() if k != incrementer.key}
        )
        return self.run(job, next_parameters)

    def restart(self, job: Job, execution_id: int) -> JobExecution:
        """Run a FAILED or STOPPED execution's instance again.

        Raises:
            JobRestartError: The execution belongs to another job or is not
                in a restartable status.
        """
        previous = self._repository.get_job_execution(execution_id)
        if previous.job_name != job.name:
            raise JobRestartError(
                job.name,
                f"execution {execution_id} belongs to job '{previous.job_name}'",
            )
        if not BatchStatus(previous.status).is_restartable:
            raise JobRestartError(
                job.name,
                f"execution {execution_id} is {BatchStatus(previous.status).value}",
            )
        return self.run(job, previous.parameters)

    def stop(self, execution_id: int) -> JobExecution:
        """Request a cooperative stop; the running step halts between chunks."""
        return self._repository.request_stop(execution_id)
