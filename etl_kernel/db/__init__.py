"""Database layer - declarative base, engine construction and session scopes."""

from etl_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from etl_kernel.db.engine import (
    create_engine_for_url,
    create_tables,
    drop_tables,
    session_factory_for,
    session_scope,
)

__all__ = [
    "create_engine_for_url",
    "create_tables",
    "drop_tables",
    "session_factory_for",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
