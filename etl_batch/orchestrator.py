"""
BatchOrchestrator -- DI container for the batch engine.

Contract:
    Wires one JobRepository and one JobLauncher around a session factory
    and a Clock.  Single place where the engine's dependencies are composed.

Architecture: etl_batch (top-level).  This is the canonical entry point for
    running jobs.

Invariants enforced:
    - Clock injection (repository, steps and jobs all see the same Clock).
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from etl_kernel.db.engine import create_tables, session_factory_for
from etl_kernel.domain.clock import Clock, SystemClock
from etl_kernel.logging_config import get_logger

from etl_batch.services.job import Job
from etl_batch.services.launcher import JobLauncher
from etl_batch.services.repository import JobRepository

logger = get_logger("batch.orchestrator")


class BatchOrchestrator:
    """DI container for the batch engine.

    Contract:
        - ``from_engine()`` factory creates a fully wired orchestrator.
        - ``launcher`` runs, restarts and stops jobs.
        - ``repository`` exposes execution history.

    Non-goals:
        - Does NOT create application tables -- callers import their models
          before ``initialize_schema()``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._repository = JobRepository(session_factory, self._clock)
        self._launcher = JobLauncher(self._repository)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        clock: Clock | None = None,
    ) -> BatchOrchestrator:
        """Create a BatchOrchestrator whose sessions bind to ``engine``."""
        factory = session_factory_for(engine)
        logger.info(
            "batch_orchestrator_created",
            extra={"dialect": engine.dialect.name},
        )
        return cls(session_factory=factory, clock=clock)

    def initialize_schema(self) -> None:
        """Create the execution metadata tables (and any imported models)."""
        create_tables(self._session_factory.kw["bind"])

    def launch(self, job: Job, parameters: dict | None = None):
        """Shortcut for ``launcher.launch_next(job, parameters)``."""
        return self._launcher.launch_next(job, parameters)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def repository(self) -> JobRepository:
        return self._repository

    @property
    def launcher(self) -> JobLauncher:
        return self._launcher

    @property
    def clock(self) -> Clock:
        return self._clock
