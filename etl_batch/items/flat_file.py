"""
Delimited flat-file item reader and writer.

Reading streams the file through ``csv.reader`` so quoted values may hold
the delimiter, quotes or line breaks; every failure reports the line its
record starts on.  Configurable: delimiter, encoding,
lines_to_skip, comment prefixes, strict.  Handles BOM via utf-8-sig when
encoding is utf-8.  Streams; does not load the entire file.

Writing formats a whole chunk up front, then appends it to the resource when
the chunk transaction commits.  If the transaction rolls back after the
append, the file is truncated to its previous length.
"""

from __future__ import annotations

import csv
import dataclasses
import io
import os
import types
import typing
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, Sequence, TypeVar

from sqlalchemy import event
from sqlalchemy.orm import Session

from etl_kernel.exceptions import SourceReadError
from etl_kernel.logging_config import get_logger

logger = get_logger("batch.items.flat_file")

T = TypeVar("T")

FieldSet = dict[str, str]

_TRUE = frozenset({"true", "t", "yes", "y", "1"})
_FALSE = frozenset({"false", "f", "no", "n", "0"})


def _get_encoding(encoding: str) -> str:
    if encoding.lower() == "utf-8":
        return "utf-8-sig"  # Strip BOM if present
    return encoding


def _recording(lines: Iterator[str], sink: list[str]) -> Iterator[str]:
    """Pass ``lines`` through, keeping each one in ``sink``."""
    for line in lines:
        sink.append(line)
        yield line


# =============================================================================
# Field set -> record mapping
# =============================================================================


def _convert(raw: str, target: Any) -> Any:
    """Convert one raw field to ``target``; raise ValueError on failure."""
    origin = typing.get_origin(target)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(target) if a is not type(None)]
        if raw.strip() == "":
            return None
        return _convert(raw, args[0])
    if target is str or target is Any:
        return raw
    if target is bool:
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ValueError(f"invalid boolean {raw!r}")
    if target is Decimal:
        try:
            return Decimal(raw.strip())
        except InvalidOperation:
            raise ValueError(f"invalid decimal {raw!r}") from None
    if target in (int, float):
        return target(raw.strip())
    return target(raw)


class DelimitedRecordMapper(Generic[T]):
    """Build a dataclass record from a named field set.

    Each field is converted to the record's annotated type (``int``,
    ``float``, ``Decimal``, ``bool``, ``str`` or an optional of those;
    an empty value maps to None for optionals).  ``field_map`` renames
    file columns to record fields.

    With ``strict`` (the default) a column that matches no record field is an
    error rather than being dropped.
    """

    def __init__(
        self,
        record_type: type[T],
        field_map: dict[str, str] | None = None,
        strict: bool = True,
    ):
        if not dataclasses.is_dataclass(record_type):
            raise TypeError(f"{record_type!r} is not a dataclass")
        self._record_type = record_type
        self._field_map = field_map or {}
        self._strict = strict
        self._hints = typing.get_type_hints(record_type)
        self._fields = {f.name for f in dataclasses.fields(record_type) if f.init}

    def __call__(self, field_set: FieldSet) -> T:
        kwargs: dict[str, Any] = {}
        for column, raw in field_set.items():
            name = self._field_map.get(column, column)
            if name not in self._fields:
                if self._strict:
                    raise ValueError(
                        f"column '{column}' matches no field of "
                        f"{self._record_type.__name__}"
                    )
                continue
            try:
                kwargs[name] = _convert(raw, self._hints[name])
            except (TypeError, ValueError) as exc:
                raise ValueError(f"field '{name}': {exc}") from exc
        return self._record_type(**kwargs)


# =============================================================================
# Reader
# =============================================================================


class FlatFileItemReader(Generic[T]):
    """Read a delimited text resource as one record per ``csv`` row.

    A quoted field may span physical lines.  Blank lines are ignored and do
    not count as items; so are records whose raw text starts with one of
    ``comment_prefixes`` (none by default).  A quoted first field never
    counts as a comment.  A record with the wrong number of fields, a failed
    conversion, or an I/O fault raises ``SourceReadError`` carrying the
    line the record starts on.
    """

    def __init__(
        self,
        name: str,
        resource: Path | str,
        field_names: Sequence[str],
        mapper: Callable[[FieldSet], T],
        delimiter: str = ",",
        encoding: str = "utf-8",
        lines_to_skip: int = 0,
        comment_prefixes: Sequence[str] = (),
        strict: bool = True,
    ):
        if any(not prefix for prefix in comment_prefixes):
            raise ValueError("comment prefixes must be non-empty")
        self._name = name
        self._resource = Path(resource)
        self._field_names = tuple(field_names)
        self._mapper = mapper
        self._delimiter = delimiter
        self._encoding = _get_encoding(encoding)
        self._lines_to_skip = lines_to_skip
        self._comment_prefixes = tuple(comment_prefixes)
        self._strict = strict

    @property
    def name(self) -> str:
        return self._name

    @property
    def resource(self) -> Path:
        return self._resource

    def read(self, start_at: int = 0) -> Iterator[T]:
        if not self._resource.exists():
            if self._strict:
                raise SourceReadError(
                    self._name, start_at,
                    f"resource does not exist: {self._resource}",
                )
            logger.warning(
                "reader_resource_missing",
                extra={"reader": self._name, "resource": str(self._resource)},
            )
            return
        position = 0
        line_number = self._lines_to_skip
        physical: list[str] = []
        try:
            with self._resource.open("r", encoding=self._encoding, newline="") as f:
                for _ in range(self._lines_to_skip):
                    next(f, None)
                records = csv.reader(_recording(f, physical), delimiter=self._delimiter)
                while True:
                    line_number = self._lines_to_skip + records.line_num + 1
                    physical.clear()
                    try:
                        values = next(records, None)
                    except csv.Error as exc:
                        raise SourceReadError(
                            self._name, position, str(exc),
                            line_number=line_number, line="".join(physical),
                        ) from exc
                    if values is None:
                        return
                    text = "".join(physical).rstrip("\r\n")
                    if not text.strip() or text.startswith(self._comment_prefixes):
                        continue
                    if position < start_at:
                        position += 1
                        continue
                    yield self._map_record(values, text, position, line_number)
                    position += 1
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceReadError(
                self._name, position, str(exc), line_number=line_number,
            ) from exc

    def _map_record(
        self, values: list[str], text: str, position: int, line_number: int,
    ) -> T:
        if len(values) != len(self._field_names):
            raise SourceReadError(
                self._name,
                position,
                f"expected {len(self._field_names)} fields, found {len(values)}",
                line_number=line_number,
                line=text,
            )
        try:
            return self._mapper(dict(zip(self._field_names, values)))
        except (TypeError, ValueError, KeyError) as exc:
            raise SourceReadError(
                self._name, position, str(exc), line_number=line_number, line=text,
            ) from exc


# =============================================================================
# Writer
# =============================================================================


def _default_field_extractor(item: Any) -> Sequence[Any]:
    if dataclasses.is_dataclass(item) and not isinstance(item, type):
        return [getattr(item, f.name) for f in dataclasses.fields(item)]
    if isinstance(item, (list, tuple)):
        return item
    raise TypeError(f"cannot extract fields from {type(item).__name__}")


class DelimitedLineAggregator(Generic[T]):
    """Format an item as one delimited line (no line terminator).

    ``field_extractor`` returns the item's values in output order; the
    default takes a dataclass's fields in declaration order.  Values that
    contain the delimiter, a quote or a line break are quoted the way
    ``csv`` reads them back.  A line that would start with one of
    ``comment_prefixes`` gets its first value quoted, so a reader configured
    with the same prefixes still returns it.
    """

    def __init__(
        self,
        field_extractor: Callable[[T], Sequence[Any]] | None = None,
        delimiter: str = ",",
        comment_prefixes: Sequence[str] = (),
    ):
        self._field_extractor = field_extractor or _default_field_extractor
        self._delimiter = delimiter
        self._comment_prefixes = tuple(p for p in comment_prefixes if p)

    def aggregate(self, item: T) -> str:
        values = ["" if v is None else v for v in self._field_extractor(item)]
        buffer = io.StringIO()
        # "\r\n" as terminator makes csv quote any value holding \r or \n.
        csv.writer(buffer, delimiter=self._delimiter, lineterminator="\r\n").writerow(values)
        line = buffer.getvalue()[:-2]
        if values and line.startswith(self._comment_prefixes):
            first = str(values[0])
            line = f'"{first}"{line[len(first):]}'
        return line


class FlatFileItemWriter(Generic[T]):
    """Append one formatted line per item to a text resource, per chunk.

    Contract:
        - ``open(0)`` truncates the resource unless ``append`` is set;
          ``open(n)`` with n > 0 (a restart) keeps the committed lines.
        - ``write()`` formats every line immediately (a formatting error
          fails the chunk before any I/O) and defers the append to the
          session's ``before_commit``.
        - If the session rolls back after the append, the resource is
          truncated back to its length before the chunk.
    """

    def __init__(
        self,
        name: str,
        resource: Path | str,
        line_aggregator: DelimitedLineAggregator[T] | None = None,
        encoding: str = "utf-8",
        line_separator: str = "\n",
        append: bool = False,
    ):
        self._name = name
        self._resource = Path(resource)
        self._line_aggregator = line_aggregator or DelimitedLineAggregator()
        self._encoding = encoding
        self._line_separator = line_separator
        self._append = append

    @property
    def name(self) -> str:
        return self._name

    @property
    def resource(self) -> Path:
        return self._resource

    def open(self, start_at: int = 0) -> None:
        self._resource.parent.mkdir(parents=True, exist_ok=True)
        if start_at == 0 and not self._append:
            self._resource.write_bytes(b"")
        else:
            self._resource.touch(exist_ok=True)

    def write(self, items: Sequence[T], session: Session) -> None:
        payload = "".join(
            self._line_aggregator.aggregate(item) + self._line_separator
            for item in items
        ).encode(self._encoding)
        appended_at: list[int] = []

        def _append_on_commit(sess: Session) -> None:
            appended_at.append(self._append_bytes(payload))

        def _forget_on_commit(sess: Session) -> None:
            appended_at.clear()

        def _truncate_on_rollback(sess: Session, previous_transaction: Any) -> None:
            if appended_at:
                self._truncate(appended_at.pop())

        event.listen(session, "before_commit", _append_on_commit, once=True)
        event.listen(session, "after_commit", _forget_on_commit, once=True)
        event.listen(session, "after_soft_rollback", _truncate_on_rollback, once=True)

    def close(self) -> None:
        pass

    def _append_bytes(self, payload: bytes) -> int:
        with self._resource.open("ab") as f:
            offset = f.tell()
            try:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            except OSError:
                f.truncate(offset)
                raise
        logger.debug(
            "flat_file_chunk_appended",
            extra={"writer": self._name, "offset": offset, "bytes": len(payload)},
        )
        return offset

    def _truncate(self, offset: int) -> None:
        with self._resource.open("r+b") as f:
            f.truncate(offset)
        logger.info(
            "flat_file_chunk_reverted",
            extra={"writer": self._name, "offset": offset},
        )
