"""
ORM models for batch execution metadata.

Contract:
    JobInstanceModel, JobExecutionModel and StepExecutionModel persist the
    job repository's state.  Execution models have ``to_dto()`` /
    ``from_dto()`` round-trip methods.

Architecture: etl_batch/models. Imports from etl_kernel.db.base only.

Invariants enforced:
    - ``(job_name, job_key)`` is UNIQUE on JobInstanceModel.
    - ``execution_id`` is UNIQUE and allocated via SequenceService.
    - ``(job_execution_id, step_name)`` is UNIQUE: a step runs at most once
      per job execution.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from etl_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from etl_batch.domain.types import JobExecution, JobInstance, StepExecution


class JobInstanceModel(TrackedBase):
    """A job name plus one set of identifying parameters."""

    __tablename__ = "batch_job_instances"

    __table_args__ = (
        UniqueConstraint("job_name", "job_key", name="uq_batch_job_instances_key"),
        Index("ix_batch_job_instances_job_name", "job_name"),
    )

    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    job_key: Mapped[str] = mapped_column(String(64), nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    executions: Mapped[list["JobExecutionModel"]] = relationship(
        "JobExecutionModel",
        back_populates="job_instance",
        order_by="JobExecutionModel.execution_id",
    )

    def to_dto(self) -> JobInstance:
        from etl_batch.domain.types import JobInstance

        return JobInstance(
            instance_id=self.id,
            job_name=self.job_name,
            job_key=self.job_key,
            parameters=self.parameters or {},
        )


class JobExecutionModel(TrackedBase):
    """Persistent job execution record."""

    __tablename__ = "batch_job_executions"

    __table_args__ = (
        Index("ix_batch_job_executions_status", "status"),
        Index("ix_batch_job_executions_job_name", "job_name"),
    )

    execution_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, unique=True,
    )
    job_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batch_job_instances.id", ondelete="CASCADE"),
        nullable=False,
    )
    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    run_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    create_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    exit_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    job_instance: Mapped["JobInstanceModel"] = relationship(
        "JobInstanceModel",
        back_populates="executions",
        foreign_keys=[job_instance_id],
    )
    step_executions: Mapped[list["StepExecutionModel"]] = relationship(
        "StepExecutionModel",
        back_populates="job_execution",
        order_by="StepExecutionModel.step_index",
    )

    def to_dto(self) -> JobExecution:
        from etl_batch.domain.types import BatchStatus, JobExecution

        return JobExecution(
            execution_id=self.execution_id,
            job_instance_id=self.job_instance_id,
            job_name=self.job_name,
            status=BatchStatus(self.status),
            parameters=self.parameters or {},
            run_id=self.run_id,
            create_time=self.create_time,
            start_time=self.start_time,
            end_time=self.end_time,
            exit_message=self.exit_message,
            step_executions=tuple(s.to_dto() for s in self.step_executions),
        )

    def apply(self, dto: JobExecution) -> None:
        """Copy the mutable fields of ``dto`` onto this row."""
        self.status = dto.status.value
        self.start_time = dto.start_time
        self.end_time = dto.end_time
        self.exit_message = dto.exit_message

    @classmethod
    def from_dto(cls, dto: JobExecution) -> JobExecutionModel:
        return cls(
            execution_id=dto.execution_id,
            job_instance_id=dto.job_instance_id,
            job_name=dto.job_name,
            status=dto.status.value,
            parameters=dto.parameters or None,
            run_id=dto.run_id,
            create_time=dto.create_time,
            start_time=dto.start_time,
            end_time=dto.end_time,
            exit_message=dto.exit_message,
        )


class StepExecutionModel(TrackedBase):
    """Persistent step execution record, updated with every chunk commit."""

    __tablename__ = "batch_step_executions"

    __table_args__ = (
        UniqueConstraint(
            "job_execution_id", "step_name", name="uq_batch_step_executions_step",
        ),
        Index("ix_batch_step_executions_instance_step", "job_instance_id", "step_name"),
    )

    job_execution_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("batch_job_executions.execution_id", ondelete="CASCADE"),
        nullable=False,
    )
    job_instance_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    read_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    filter_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    write_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    commit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rollback_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    restart_position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    exit_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    job_execution: Mapped["JobExecutionModel"] = relationship(
        "JobExecutionModel",
        back_populates="step_executions",
        foreign_keys=[job_execution_id],
    )

    def to_dto(self) -> StepExecution:
        from etl_batch.domain.types import BatchStatus, StepExecution

        return StepExecution(
            step_execution_id=self.id,
            job_execution_id=self.job_execution_id,
            step_name=self.step_name,
            step_index=self.step_index,
            status=BatchStatus(self.status),
            read_count=self.read_count,
            filter_count=self.filter_count,
            write_count=self.write_count,
            commit_count=self.commit_count,
            rollback_count=self.rollback_count,
            restart_position=self.restart_position,
            start_time=self.start_time,
            end_time=self.end_time,
            exit_message=self.exit_message,
        )

    def apply(self, dto: StepExecution) -> None:
        """Copy the mutable fields of ``dto`` onto this row."""
        self.status = dto.status.value
        self.read_count = dto.read_count
        self.filter_count = dto.filter_count
        self.write_count = dto.write_count
        self.commit_count = dto.commit_count
        self.rollback_count = dto.rollback_count
        self.restart_position = dto.restart_position
        self.start_time = dto.start_time
        self.end_time = dto.end_time
        self.exit_message = dto.exit_message

    @classmethod
    def from_dto(cls, dto: StepExecution, job_instance_id: UUID) -> StepExecutionModel:
        model = cls(
            id=dto.step_execution_id,
            job_execution_id=dto.job_execution_id,
            job_instance_id=job_instance_id,
            step_name=dto.step_name,
            step_index=dto.step_index,
        )
        model.apply(dto)
        return model
