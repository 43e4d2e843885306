"""
Structured JSON logging for the kernel, the batch engine and the ETL job.

Every record is rendered as one JSON object per line: timestamp, level,
logger, message, the run-scoped fields held in ``LogContext`` and any
``extra={...}`` passed at the call site.  Exceptions contribute their type,
message, machine-readable ``code`` and public attributes.

All loggers hang off the ``etl_kernel`` namespace (``get_logger("batch.step")``
-> ``etl_kernel.batch.step``), which does not propagate to the root logger.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, Iterator
from uuid import UUID

_ROOT = "etl_kernel"


class LogContext:
    """
    Run-scoped fields stamped onto every record emitted in this context.

    Values are stored as strings.  The holder is a ContextVar, so threads
    and asyncio tasks each see their own bindings.
    """

    FIELDS = ("job_name", "job_execution_id", "run_id", "step_name")

    _fields: ContextVar[dict[str, str]] = ContextVar("etl_log_context", default={})

    @classmethod
    def _merged(cls, values: dict[str, Any]) -> dict[str, str]:
        unknown = set(values) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"unknown log context fields: {sorted(unknown)}")
        merged = dict(cls._fields.get())
        merged.update({k: str(v) for k, v in values.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **values: Any) -> None:
        """Set fields for the rest of this context; None leaves a field as is."""
        cls._fields.set(cls._merged(values))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields inside a ``with`` block; the previous fields come back after."""
        token = cls._fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal, PurePath)):
        return str(value)
    return repr(value)


# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single line of JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(LogContext.get_all())
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry.update(self._exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{_ROOT}.{name}")


_configured = False
_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``etl_kernel`` logger.

    Only the first call in a process has an effect; ``reset_logging()``
    re-arms it.  ``handler`` wins over ``stream``, which defaults to stderr.
    """
    global _configured, _installed
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler or logging.StreamHandler(stream or sys.stderr)
    _installed = target
    target.setFormatter(StructuredFormatter())
    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(target)


def reset_logging() -> None:
    """Detach the JSON handler and re-arm ``configure_logging()``.  Tests only."""
    global _configured, _installed
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    if _installed is not None:
        root.removeHandler(_installed)
        _installed = None
    root.setLevel(logging.WARNING)
