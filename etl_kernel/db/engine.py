"""
Engine construction, schema creation and the transactional session scope.

Contract:
    ``create_engine_for_url()`` is the single place a database URL becomes an
    Engine.  Callers own the engine they get back and pass it (or a
    sessionmaker bound to it) explicitly; there is no process-wide engine.

Architecture position: Kernel > DB.  Imports db/base.py only; the batch
    execution models and the sequence counter are imported lazily by
    ``create_tables()`` so their tables always exist.

Invariants enforced:
    - ``session_scope()`` commits on normal exit, rolls back on any error
      and always closes the session.
    - SQLite connections hand transaction control to SQLAlchemy (pysqlite's
      implicit BEGIN is disabled, SQLAlchemy emits it) so SAVEPOINT and
      rollback behave as on a server database.
    - SQLite files run in WAL journal mode: an open streaming cursor on one
      connection does not block chunk commits on another.

Failure modes:
    - sqlalchemy.exc.ArgumentError for an unparseable URL.
    - OperationalError ("database is locked") once busy_timeout expires.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from etl_kernel.db.base import Base
from etl_kernel.logging_config import get_logger

logger = get_logger("db.engine")

SQLITE_BUSY_TIMEOUT_MS = 5000


def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


def _sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def create_engine_for_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Build an Engine for ``database_url``.

    SQLite gets the WAL / explicit-BEGIN listeners.  Other backends get
    ``pool_pre_ping`` plus whatever ``pool_options`` (pool_size,
    max_overflow, pool_recycle ...) the caller passes through.
    """
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        engine = create_engine(url, echo=echo)
        event.listen(engine, "connect", _sqlite_pragmas)
        event.listen(engine, "begin", _sqlite_begin)
    else:
        pool_options.setdefault("pool_pre_ping", True)
        engine = create_engine(url, echo=echo, **pool_options)

    logger.debug(
        "engine_created",
        extra={"dialect": backend, "database": url.database, "echo": echo},
    )
    return engine


def session_factory_for(engine: Engine) -> sessionmaker[Session]:
    """Sessions that keep loaded attributes readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    One transaction: commit on success, roll back and re-raise on error.

    Usage::

        with session_scope(factory) as session:
            session.add(model)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back")
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create every table registered on ``Base.metadata`` (idempotent).

    Application models must already be imported by the caller.
    """
    import etl_kernel.services.sequence_service  # noqa: F401
    import etl_batch.models  # noqa: F401

    Base.metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    Base.metadata.drop_all(engine)
