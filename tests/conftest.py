"""
Pytest fixtures for the batch ETL test suite.

Provides:
- A file-backed SQLite engine per test (WAL mode, explicit BEGIN)
- Session factory, job repository and launcher bound to that engine
- Deterministic clock
- Structured-log capture

A file database (not ``:memory:``) is used so that the streaming cursor
reader and the chunk transactions run on separate connections exactly as
they do in production.
"""

import json
import logging
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from etl_kernel.db.engine import (
    create_engine_for_url,
    create_tables,
    session_factory_for,
)
from etl_kernel.domain.clock import DeterministicClock
from etl_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from etl_batch.services.launcher import JobLauncher
from etl_batch.services.repository import JobRepository

import etl_people.models  # noqa: F401  people table for writer tests


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _suite_logging():
    """Route etl_kernel logs to a throwaway buffer for the whole run."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _fresh_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Collect every etl_kernel record emitted during the test.

    Returns a callable giving the records so far as parsed JSON dicts::

        launcher.run(job)
        assert any(r["message"] == "chunk_committed" for r in captured_logs())
    """
    buffer = StringIO()
    capture = logging.StreamHandler(buffer)
    capture.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger("etl_kernel")
    saved_level = kernel_logger.level
    kernel_logger.setLevel(logging.DEBUG)
    kernel_logger.addHandler(capture)

    yield lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]

    kernel_logger.removeHandler(capture)
    kernel_logger.setLevel(saved_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'batch.db'}"


@pytest.fixture
def engine(database_url) -> Generator[Engine, None, None]:
    """Engine with every table (execution metadata and people) created."""
    engine = create_engine_for_url(database_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return session_factory_for(engine)


@pytest.fixture
def fetch_people(engine):
    """Return the ``people`` table as (first_name, age, email) tuples in id order."""

    def _fetch() -> list[tuple]:
        with engine.connect() as conn:
            rows = conn.execute(
                text("SELECT first_name, age, email FROM people ORDER BY id")
            ).all()
        return [tuple(row) for row in rows]

    return _fetch


# =============================================================================
# Clock and service fixtures
# =============================================================================


@pytest.fixture
def clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def repository(session_factory, clock) -> JobRepository:
    return JobRepository(session_factory, clock)


@pytest.fixture
def launcher(repository) -> JobLauncher:
    return JobLauncher(repository)
