"""
Relational item reader and writer.

SqlCursorItemReader executes one fixed query on a dedicated connection and
streams the rows; SqlBatchItemWriter binds every item of a chunk into one
parameterized ``executemany`` on the chunk session.

Architecture: etl_batch/items.  Neither class commits: the reader's
    connection only ever reads, and the writer runs on the step's session.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Generic, Iterator, Mapping, Sequence, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from etl_kernel.exceptions import SourceReadError
from etl_kernel.logging_config import get_logger

logger = get_logger("batch.items.database")

T = TypeVar("T")


class SqlCursorItemReader(Generic[T]):
    """Stream the rows of one query, mapped to records by ``row_mapper``.

    ``row_mapper(row, row_number)`` receives each result row and its
    zero-based index.  Errors from the mapper or the database surface as
    ``SourceReadError``.  The connection is held for the life of one
    ``read()`` iterator and released when it is exhausted or closed.
    """

    def __init__(
        self,
        name: str,
        engine: Engine,
        sql: str,
        row_mapper: Callable[[Row, int], T],
        parameters: Mapping[str, Any] | None = None,
        fetch_size: int = 100,
    ):
        self._name = name
        self._engine = engine
        self._sql = sql
        self._row_mapper = row_mapper
        self._parameters = dict(parameters or {})
        self._fetch_size = fetch_size

    @property
    def name(self) -> str:
        return self._name

    def read(self, start_at: int = 0) -> Iterator[T]:
        position = 0
        try:
            with self._engine.connect() as connection:
                result = connection.execution_options(
                    stream_results=True,
                    max_row_buffer=self._fetch_size,
                ).execute(text(self._sql), self._parameters)
                for row in result:
                    if position < start_at:
                        position += 1
                        continue
                    yield self._map_row(row, position)
                    position += 1
        except SQLAlchemyError as exc:
            raise SourceReadError(self._name, position, str(exc)) from exc

    def _map_row(self, row: Row, position: int) -> T:
        try:
            return self._row_mapper(row, position)
        except Exception as exc:
            raise SourceReadError(
                self._name, position, f"row mapping failed: {exc}",
            ) from exc


def _default_item_binder(item: Any) -> dict[str, Any]:
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return dataclasses.asdict(item)
    if isinstance(item, Mapping):
        return dict(item)
    raise TypeError(f"cannot bind parameters from {type(item).__name__}")


class SqlBatchItemWriter(Generic[T]):
    """Insert (or update) a chunk with one parameterized statement.

    ``sql`` uses named bind parameters (``:age``); ``item_binder(item)``
    returns the parameters for one item.  The default binds a dataclass's
    fields by name.
    """

    def __init__(
        self,
        name: str,
        sql: str,
        item_binder: Callable[[T], Mapping[str, Any]] | None = None,
    ):
        self._name = name
        self._statement = text(sql)
        self._item_binder = item_binder or _default_item_binder

    @property
    def name(self) -> str:
        return self._name

    def open(self, start_at: int = 0) -> None:
        pass

    def write(self, items: Sequence[T], session: Session) -> None:
        if not items:
            return
        parameters = [dict(self._item_binder(item)) for item in items]
        session.execute(self._statement, parameters)
        logger.debug(
            "sql_chunk_written",
            extra={"writer": self._name, "rows": len(parameters)},
        )

    def close(self) -> None:
        pass
