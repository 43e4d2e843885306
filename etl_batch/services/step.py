"""
ChunkOrientedStep -- transaction-per-chunk read / write loop.

Contract:
    ``execute()`` reads items into a buffer until it holds ``chunk_size``
    reads or the reader is exhausted, then writes the buffer and records the
    step's counts in ONE transaction.  Repeats until the reader is exhausted.

Architecture: etl_batch/services.  Driven by ``Job``; persists through
    ``JobRepository``.

Invariants enforced:
    - A chunk is committed wholly or not at all: the writer's work and the
      step execution update share one ``session_scope``.
    - Counts and ``restart_position`` change only after their chunk commits.
    - A restarted step reads from ``restart_position``, so committed items
      are never read or written again.
    - Any read or write failure rolls back the in-flight chunk, marks the
      step FAILED and propagates.
    - For N items and chunk size C the writer is called ceil(N / C) times.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Generic, Iterator, TypeVar

from etl_kernel.db.engine import session_scope
from etl_kernel.exceptions import (
    JobInterruptedError,
    describe_error,
    SinkWriteError,
    SourceReadError,
)
from etl_kernel.logging_config import get_logger

from etl_batch.domain.types import BatchStatus, Chunk, StepExecution
from etl_batch.items.base import ItemReader, ItemWriter
from etl_batch.services.repository import JobRepository

logger = get_logger("batch.step")

I = TypeVar("I")
O = TypeVar("O")

DEFAULT_CHUNK_SIZE = 100


class ChunkOrientedStep(Generic[I, O]):
    """One read-process-write stage of a job.

    ``processor``, when given, maps each read item to the item to write;
    returning None filters the item out (it still counts as read and moves
    the restart position).

    ``allow_start_if_complete`` re-runs the step from the beginning even when
    it already completed in an earlier execution of the same job instance.
    """

    def __init__(
        self,
        name: str,
        reader: ItemReader[I],
        writer: ItemWriter[O],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        processor: Callable[[I], O | None] | None = None,
        allow_start_if_complete: bool = False,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self._name = name
        self._reader = reader
        self._writer = writer
        self._chunk_size = chunk_size
        self._processor = processor
        self._allow_start_if_complete = allow_start_if_complete

    @property
    def name(self) -> str:
        return self._name

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def allow_start_if_complete(self) -> bool:
        return self._allow_start_if_complete

    def execute(
        self,
        step_execution: StepExecution,
        repository: JobRepository,
    ) -> StepExecution:
        """Run the chunk loop from ``step_execution.restart_position``.

        Returns the COMPLETED or STOPPED step execution.

        Raises:
            SourceReadError: The reader failed; nothing of the in-flight
                chunk was written.
            SinkWriteError: The writer failed; the chunk was rolled back.
        """
        clock = repository.clock
        execution = step_execution
        rolled_back = 0

        logger.info(
            "step_started",
            extra={
                "step_name": self._name,
                "chunk_size": self._chunk_size,
                "restart_position": execution.restart_position,
            },
        )

        items: Iterator[I] | None = None
        try:
            self._writer.open(execution.restart_position)
            items = self._reader.read(start_at=execution.restart_position)
            exhausted = False
            while not exhausted:
                if repository.is_stop_requested(execution.job_execution_id):
                    raise JobInterruptedError(self._name)
                chunk = Chunk(capacity=self._chunk_size)
                exhausted = self._fill_chunk(chunk, items, execution.restart_position)
                if not chunk.is_empty:
                    # Only a failed commit rolls a transaction back.
                    rolled_back = 1
                    execution = self._commit_chunk(chunk, execution, repository)
                    rolled_back = 0
        except JobInterruptedError as exc:
            execution = replace(
                execution,
                status=BatchStatus.STOPPED,
                end_time=clock.now(),
                exit_message=str(exc),
            )
            repository.update_step_execution(execution)
            logger.info(
                "step_stopped",
                extra={
                    "step_name": self._name,
                    "restart_position": execution.restart_position,
                },
            )
            return execution
        except Exception as exc:
            execution = replace(
                execution,
                status=BatchStatus.FAILED,
                rollback_count=execution.rollback_count + rolled_back,
                end_time=clock.now(),
                exit_message=describe_error(exc),
            )
            repository.update_step_execution(execution)
            logger.error(
                "step_failed",
                extra={
                    "step_name": self._name,
                    "read_count": execution.read_count,
                    "write_count": execution.write_count,
                    "commit_count": execution.commit_count,
                    "restart_position": execution.restart_position,
                },
                exc_info=True,
            )
            raise
        finally:
            close = getattr(items, "close", None)
            if close is not None:
                close()
            self._writer.close()

        execution = replace(
            execution,
            status=BatchStatus.COMPLETED,
            end_time=clock.now(),
        )
        repository.update_step_execution(execution)
        logger.info(
            "step_completed",
            extra={
                "step_name": self._name,
                "read_count": execution.read_count,
                "filter_count": execution.filter_count,
                "write_count": execution.write_count,
                "commit_count": execution.commit_count,
            },
        )
        return execution

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _fill_chunk(self, chunk: Chunk, items: Iterator[I], position: int) -> bool:
        """Read into ``chunk`` until it is full; return True if the reader ran dry."""
        while not chunk.is_full:
            try:
                item = next(items)
            except StopIteration:
                return True
            except SourceReadError:
                raise
            except Exception as exc:
                raise SourceReadError(
                    self._reader.name, position + chunk.read_count, str(exc),
                ) from exc

            if self._processor is None:
                chunk.add(item)
                continue
            processed = self._processor(item)
            if processed is None:
                chunk.skip()
            else:
                chunk.add(processed)
        return False

    def _commit_chunk(
        self,
        chunk: Chunk,
        execution: StepExecution,
        repository: JobRepository,
    ) -> StepExecution:
        committed = replace(
            execution,
            read_count=execution.read_count + chunk.read_count,
            filter_count=execution.filter_count + chunk.filter_count,
            write_count=execution.write_count + len(chunk),
            commit_count=execution.commit_count + 1,
            restart_position=execution.restart_position + chunk.read_count,
        )
        try:
            with session_scope(repository.session_factory) as session:
                if chunk.items:
                    self._writer.write(chunk.items, session)
                repository.update_step_execution(committed, session=session)
        except SinkWriteError:
            logger.warning("chunk_rolled_back", extra={"chunk_items": len(chunk)})
            raise
        except Exception as exc:
            logger.warning("chunk_rolled_back", extra={"chunk_items": len(chunk)})
            raise SinkWriteError(self._writer.name, len(chunk), str(exc)) from exc

        logger.info(
            "chunk_committed",
            extra={
                "step_name": self._name,
                "chunk_items": len(chunk),
                "commit_count": committed.commit_count,
                "restart_position": committed.restart_position,
            },
        )
        return committed
