"""
etl_batch.domain.types -- Pure frozen dataclasses for the batch engine.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  The ORM models in ``etl_batch.models`` convert to and from
these with ``to_dto()``.

Invariants enforced:
    - Execution snapshots are immutable; the engine produces a new snapshot
      (``dataclasses.replace``) for every state change.
    - ``restart_position`` on a StepExecution only ever reflects committed
      chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

T = TypeVar("T")


# =============================================================================
# Status enum
# =============================================================================


class BatchStatus(str, Enum):
    """Lifecycle status shared by job and step executions."""

    STARTING = "starting"  # Job execution created, not yet running
    STARTED = "started"  # Execution in progress
    STOPPING = "stopping"  # Stop requested, waiting for the step to notice
    STOPPED = "stopped"  # Stopped between chunks; restartable
    COMPLETED = "completed"  # Finished successfully
    FAILED = "failed"  # Aborted by an error; restartable

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_restartable(self) -> bool:
        return self in (BatchStatus.FAILED, BatchStatus.STOPPED)

    @property
    def is_running(self) -> bool:
        return self in (
            BatchStatus.STARTING,
            BatchStatus.STARTED,
            BatchStatus.STOPPING,
        )


_TERMINAL = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.STOPPED})


# =============================================================================
# Execution DTOs
# =============================================================================


@dataclass(frozen=True)
class JobInstance:
    """A job definition plus one set of identifying parameters.

    ``job_key`` is the SHA-256 fingerprint of the canonical parameters;
    ``(job_name, job_key)`` is UNIQUE.
    """

    instance_id: UUID
    job_name: str
    job_key: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepExecution:
    """Immutable snapshot of one step's execution within a job execution.

    Counts describe committed work only.  ``restart_position`` is the
    absolute source offset just past the last committed item; a restarted
    step begins reading there.
    """

    step_execution_id: UUID
    job_execution_id: int
    step_name: str
    status: BatchStatus
    step_index: int = 0
    read_count: int = 0
    filter_count: int = 0
    write_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    restart_position: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_message: str | None = None


@dataclass(frozen=True)
class JobExecution:
    """Immutable snapshot of one attempt at running a job instance.

    ``execution_id`` is monotonic across all jobs (SequenceService).
    ``run_id`` is the ``run.id`` job parameter when the job uses a
    RunIdIncrementer, else None.
    """

    execution_id: int
    job_instance_id: UUID
    job_name: str
    status: BatchStatus
    parameters: dict[str, Any] = field(default_factory=dict)
    run_id: int | None = None
    create_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_message: str | None = None
    step_executions: tuple[StepExecution, ...] = ()

    def step_execution(self, step_name: str) -> StepExecution | None:
        """The step execution for ``step_name`` in this run, if it ran."""
        for step_execution in self.step_executions:
            if step_execution.step_name == step_name:
                return step_execution
        return None


# =============================================================================
# Chunk
# =============================================================================


@dataclass
class Chunk(Generic[T]):
    """Ordered, bounded buffer of items awaiting one atomic write.

    Owned by the executing step for one commit cycle.  ``read_count`` counts
    every item read into this cycle, including those a processor filtered
    out of ``items``.
    """

    capacity: int
    items: list[T] = field(default_factory=list)
    read_count: int = 0
    filter_count: int = 0

    def add(self, item: T) -> None:
        self.read_count += 1
        self.items.append(item)

    def skip(self) -> None:
        self.read_count += 1
        self.filter_count += 1

    @property
    def is_full(self) -> bool:
        return self.read_count >= self.capacity

    @property
    def is_empty(self) -> bool:
        return self.read_count == 0

    def __len__(self) -> int:
        return len(self.items)
