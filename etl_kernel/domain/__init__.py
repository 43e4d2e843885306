"""Pure domain layer: no ORM, no database, no I/O."""

from etl_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
