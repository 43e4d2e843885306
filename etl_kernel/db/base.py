"""
Declarative ORM base shared by the execution metadata and application tables.

Architecture position: Kernel > DB, the bottom of the import graph.  Every
model module imports from here and this module imports nothing from the
project.

Invariants enforced:
    - ``Mapped[datetime]`` columns are timezone-aware.
    - UUIDs round-trip through a 36-character string column on every backend.
    - ``TrackedBase`` tables get a uuid4 key plus server-stamped
      ``created_at`` / ``updated_at``.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """``uuid.UUID`` in Python, ``VARCHAR(36)`` in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }


class TrackedBase(Base):
    """Abstract base: uuid4 primary key and row timestamps."""

    __abstract__ = True

    id: Mapped[PyUUID] = mapped_column(primary_key=True, default=uuid4)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )


UUID = PyUUID
