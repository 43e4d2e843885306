"""
SequenceService -- named monotonic counters for job execution ids.

Each sequence is one row in ``sequence_counters``.  Allocation locks that
row (``SELECT ... FOR UPDATE``; SQLite serialises writers instead) and bumps
it inside the caller's transaction, so a value is consumed only when the
caller commits.  ``MAX(id) + 1`` is never used.

Architecture position:
    Kernel > Services.  The batch JobRepository calls it when it creates a
    job execution.

Failure modes:
    - Two sessions creating the same counter at once: the loser's savepoint
      hits IntegrityError and it re-reads the winner's row.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from etl_kernel.db.base import Base
from etl_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """Allocate values from named sequences; never commits on its own."""

    JOB_EXECUTION = "job_execution"

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=0)
        self._session.add(counter)
        try:
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return self._locked(name)
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Return the next value of ``sequence_name``; the first is 1."""
        counter = self._locked(sequence_name) or self._create(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None if the sequence was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name,
            )
        ).scalar_one_or_none()
