"""
etl_batch.domain -- Pure types and value objects for the batch engine.

ZERO I/O.  Execution snapshots are frozen dataclasses.
"""

from etl_batch.domain.types import (
    BatchStatus,
    Chunk,
    JobExecution,
    JobInstance,
    StepExecution,
)

__all__ = [
    "BatchStatus",
    "Chunk",
    "JobExecution",
    "JobInstance",
    "StepExecution",
]
