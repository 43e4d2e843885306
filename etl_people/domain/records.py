"""Record types for the people ETL.  ZERO I/O."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Person:
    """One line of the input file; one row of the ``people`` table."""

    first_name: str
    age: int
    email: str


@dataclass(frozen=True)
class AgeCount:
    """Number of people sharing one age (the bucket key)."""

    age: int
    count: int
