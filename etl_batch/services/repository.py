"""
JobRepository -- persistence of job instances and job / step executions.

Contract:
    Creates job executions (rejecting duplicate and concurrent runs), starts
    step executions (rejecting out-of-order steps), and records every state
    change.  Each call runs in its own short ``session_scope`` transaction,
    except ``update_step_execution(..., session=...)`` which joins the
    caller's chunk transaction so that counts and restart position commit
    atomically with the chunk they describe.

Architecture: etl_batch/services.  Imports from etl_batch.domain,
    etl_batch.models and kernel infrastructure.

Invariants enforced:
    - A job instance is the pair (job_name, fingerprint of parameters).
    - At most one running execution per job instance (row lock on instance).
    - A COMPLETED instance is never run again (DuplicateRunError).
    - A step starts only if its predecessor's latest execution in the same
      instance is COMPLETED (StepSequencingError).
    - A job execution in a terminal status is never modified.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from etl_kernel.db.engine import session_scope
from etl_kernel.domain.clock import Clock, SystemClock
from etl_kernel.exceptions import (
    DuplicateRunError,
    JobExecutionAlreadyRunningError,
    JobExecutionImmutableError,
    JobExecutionNotFoundError,
    JobRestartError,
    StepSequencingError,
)
from etl_kernel.logging_config import get_logger
from etl_kernel.services.sequence_service import SequenceService
from etl_kernel.utils.hashing import fingerprint, to_json_value

from etl_batch.domain.types import (
    BatchStatus,
    JobExecution,
    JobInstance,
    StepExecution,
)
from etl_batch.models.execution import (
    JobExecutionModel,
    JobInstanceModel,
    StepExecutionModel,
)

logger = get_logger("batch.repository")

RUN_ID_KEY = "run.id"


def normalize_parameters(parameters: dict[str, Any] | None) -> dict[str, Any]:
    """Return ``parameters`` as plain JSON values (paths, UUIDs, dates as strings)."""
    return to_json_value(dict(parameters or {}))


class JobRepository:
    """Stores job instances and executions for launch, restart and bookkeeping.

    Non-goals:
        - Does NOT run jobs -- see JobLauncher.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def clock(self) -> Clock:
        return self._clock

    # -------------------------------------------------------------------------
    # Job executions
    # -------------------------------------------------------------------------

    def create_job_execution(
        self,
        job_name: str,
        parameters: dict[str, Any] | None = None,
        restartable: bool = True,
    ) -> JobExecution:
        """Create a STARTING execution for the instance named by the parameters.

        Raises:
            JobExecutionAlreadyRunningError: An execution of the instance is
                still running.
            DuplicateRunError: The instance already completed.
            JobRestartError: The instance has a failed execution and the job
                is not restartable.
        """
        params = normalize_parameters(parameters)
        job_key = fingerprint(params)

        with session_scope(self._session_factory) as session:
            instance = session.execute(
                select(JobInstanceModel)
                .where(
                    JobInstanceModel.job_name == job_name,
                    JobInstanceModel.job_key == job_key,
                )
                .with_for_update()
            ).scalar_one_or_none()

            is_restart = False
            if instance is None:
                instance = JobInstanceModel(
                    job_name=job_name,
                    job_key=job_key,
                    parameters=params or None,
                )
                session.add(instance)
                session.flush()
            else:
                for previous in instance.executions:
                    status = BatchStatus(previous.status)
                    if status.is_running:
                        raise JobExecutionAlreadyRunningError(
                            job_name, previous.execution_id,
                        )
                    if status == BatchStatus.COMPLETED:
                        raise DuplicateRunError(job_name, job_key)
                is_restart = bool(instance.executions)
                if is_restart and not restartable:
                    raise JobRestartError(job_name, "job is not restartable")

            execution_id = SequenceService(session).next_value(
                SequenceService.JOB_EXECUTION,
            )
            run_id = params.get(RUN_ID_KEY)
            model = JobExecutionModel(
                execution_id=execution_id,
                job_instance_id=instance.id,
                job_name=job_name,
                status=BatchStatus.STARTING.value,
                parameters=params or None,
                run_id=int(run_id) if run_id is not None else None,
                create_time=self._clock.now(),
            )
            session.add(model)
            session.flush()
            dto = model.to_dto()

        logger.info(
            "job_execution_created",
            extra={
                "job_name": job_name,
                "job_execution_id": dto.execution_id,
                "run_id": dto.run_id,
                "job_key": job_key,
                "restart": is_restart,
            },
        )
        return dto

    def update_job_execution(self, job_execution: JobExecution) -> JobExecution:
        """Persist status, timestamps and exit message of ``job_execution``.

        Raises:
            JobExecutionNotFoundError: Unknown execution id.
            JobExecutionImmutableError: The stored execution is terminal.
        """
        with session_scope(self._session_factory) as session:
            model = self._load_job_execution(session, job_execution.execution_id)
            stored = BatchStatus(model.status)
            if stored.is_terminal:
                raise JobExecutionImmutableError(
                    job_execution.execution_id, stored.value,
                )
            model.apply(job_execution)
            session.flush()
            return model.to_dto()

    def get_job_execution(self, execution_id: int) -> JobExecution:
        """Raises JobExecutionNotFoundError for an unknown id."""
        with session_scope(self._session_factory) as session:
            return self._load_job_execution(session, execution_id).to_dto()

    def get_last_job_execution(self, job_name: str) -> JobExecution | None:
        """Most recently created execution of any instance of ``job_name``."""
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(JobExecutionModel)
                .where(JobExecutionModel.job_name == job_name)
                .order_by(JobExecutionModel.execution_id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    def find_job_executions(self, job_name: str) -> tuple[JobExecution, ...]:
        """All executions of ``job_name``, oldest first."""
        with session_scope(self._session_factory) as session:
            models = session.execute(
                select(JobExecutionModel)
                .where(JobExecutionModel.job_name == job_name)
                .order_by(JobExecutionModel.execution_id)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)

    def get_job_instance(self, instance_id) -> JobInstance | None:
        with session_scope(self._session_factory) as session:
            model = session.get(JobInstanceModel, instance_id)
            return model.to_dto() if model is not None else None

    def request_stop(self, execution_id: int) -> JobExecution:
        """Ask a running execution to stop after its current chunk.

        Raises:
            JobExecutionImmutableError: The execution already finished.
        """
        with session_scope(self._session_factory) as session:
            model = self._load_job_execution(session, execution_id)
            status = BatchStatus(model.status)
            if not status.is_running:
                raise JobExecutionImmutableError(execution_id, status.value)
            model.status = BatchStatus.STOPPING.value
            session.flush()
            dto = model.to_dto()
        logger.info("job_stop_requested", extra={"job_execution_id": execution_id})
        return dto

    def is_stop_requested(self, execution_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            status = session.execute(
                select(JobExecutionModel.status)
                .where(JobExecutionModel.execution_id == execution_id)
            ).scalar_one_or_none()
            return status == BatchStatus.STOPPING.value

    def abandon(self, execution_id: int, reason: str = "abandoned") -> JobExecution:
        """Mark an execution left running by a dead process as FAILED.

        Its step executions keep their committed restart positions, so the
        instance can be relaunched afterwards.
        """
        with session_scope(self._session_factory) as session:
            model = self._load_job_execution(session, execution_id)
            status = BatchStatus(model.status)
            if status.is_terminal:
                raise JobExecutionImmutableError(execution_id, status.value)
            model.status = BatchStatus.FAILED.value
            model.end_time = self._clock.now()
            model.exit_message = reason
            session.flush()
            dto = model.to_dto()
        logger.warning(
            "job_execution_abandoned",
            extra={"job_execution_id": execution_id, "reason": reason},
        )
        return dto

    # -------------------------------------------------------------------------
    # Step executions
    # -------------------------------------------------------------------------

    def start_step(
        self,
        job_execution: JobExecution,
        step_name: str,
        step_index: int = 0,
        predecessor: str | None = None,
        restart_position: int = 0,
    ) -> StepExecution:
        """Create a STARTED step execution within ``job_execution``.

        Raises:
            StepSequencingError: ``predecessor`` has not COMPLETED in this
                job instance.
        """
        with session_scope(self._session_factory) as session:
            if predecessor is not None:
                previous = self._last_step_execution(
                    session, job_execution.job_instance_id, predecessor,
                )
                previous_status = previous.status if previous is not None else None
                if previous_status != BatchStatus.COMPLETED.value:
                    raise StepSequencingError(step_name, predecessor, previous_status)

            model = StepExecutionModel(
                job_execution_id=job_execution.execution_id,
                job_instance_id=job_execution.job_instance_id,
                step_name=step_name,
                step_index=step_index,
                status=BatchStatus.STARTED.value,
                read_count=0,
                filter_count=0,
                write_count=0,
                commit_count=0,
                rollback_count=0,
                restart_position=restart_position,
                start_time=self._clock.now(),
            )
            session.add(model)
            session.flush()
            return model.to_dto()

    def update_step_execution(
        self,
        step_execution: StepExecution,
        session: Session | None = None,
    ) -> None:
        """Persist ``step_execution``.

        With ``session`` the update joins that transaction and is committed
        (or rolled back) by its owner; otherwise it commits on its own.
        """
        if session is not None:
            self._apply_step_execution(session, step_execution)
            return
        with session_scope(self._session_factory) as own_session:
            self._apply_step_execution(own_session, step_execution)

    def get_last_step_execution(
        self, job_instance_id, step_name: str,
    ) -> StepExecution | None:
        """Latest execution of ``step_name`` across all runs of the instance."""
        with session_scope(self._session_factory) as session:
            model = self._last_step_execution(session, job_instance_id, step_name)
            return model.to_dto() if model is not None else None

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _load_job_execution(self, session: Session, execution_id: int) -> JobExecutionModel:
        model = session.execute(
            select(JobExecutionModel)
            .where(JobExecutionModel.execution_id == execution_id)
        ).scalar_one_or_none()
        if model is None:
            raise JobExecutionNotFoundError(execution_id)
        return model

    def _last_step_execution(
        self, session: Session, job_instance_id, step_name: str,
    ) -> StepExecutionModel | None:
        return session.execute(
            select(StepExecutionModel)
            .where(
                StepExecutionModel.job_instance_id == job_instance_id,
                StepExecutionModel.step_name == step_name,
            )
            .order_by(StepExecutionModel.job_execution_id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _apply_step_execution(self, session: Session, step_execution: StepExecution) -> None:
        model = session.get(StepExecutionModel, step_execution.step_execution_id)
        if model is None:
            raise JobExecutionNotFoundError(step_execution.job_execution_id)
        model.apply(step_execution)
        session.flush()
