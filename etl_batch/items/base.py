"""
Item reader / writer protocols.

Contract:
    ItemReader.read() yields one item per source record (streaming) and can
    start a fresh sequence after the first ``start_at`` items (restart).
    ItemWriter.write() persists one chunk inside the caller's transaction.

Architecture: etl_batch/items.  Readers and writers never commit or roll back;
    the chunk-oriented step owns the transaction boundary.
"""

from __future__ import annotations

from typing import Iterator, Protocol, Sequence, TypeVar, runtime_checkable

from sqlalchemy.orm import Session

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
T_contra = TypeVar("T_contra", contravariant=True)


@runtime_checkable
class ItemReader(Protocol[T_co]):
    """Lazy, forward-only, finite source of items.

    Contract:
        - ``name``: label used in logs and in ``SourceReadError``.
        - ``read(start_at)``: a fresh iterator positioned after the first
          ``start_at`` items.  Iteration is forward only; a restart asks for
          a new iterator.  Closing the iterator releases the resource.
        - Malformed records and I/O faults raise ``SourceReadError``; no
          record is ever skipped silently.
    """

    @property
    def name(self) -> str: ...

    def read(self, start_at: int = 0) -> Iterator[T_co]:
        """Yield items from offset ``start_at`` onward."""
        ...


@runtime_checkable
class ItemWriter(Protocol[T_contra]):
    """Sink that persists a whole chunk as one unit.

    Contract:
        - ``open(start_at)``: prepare the resource.  ``start_at`` is the
          number of items already committed by earlier runs of the step
          (0 on a fresh start).
        - ``write(items, session)``: persist every item, using ``session``
          for anything transactional.  Either all items become durable when
          the session commits, or none do.
        - ``close()``: release the resource.

    Non-goals:
        - Does NOT commit or roll back -- the step owns the transaction.
    """

    @property
    def name(self) -> str: ...

    def open(self, start_at: int = 0) -> None: ...

    def write(self, items: Sequence[T_contra], session: Session) -> None: ...

    def close(self) -> None: ...
