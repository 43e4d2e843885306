"""
Job parameter fingerprints.

A job instance is named by its job name plus the SHA-256 of its
parameters in canonical JSON form.  Two parameter sets that differ only in
key order, or in how a value is spelled in Python (``Path`` vs ``str``,
``Decimal("1.50")`` vs ``Decimal("1.5")``), produce the same fingerprint.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any
from uuid import UUID

_SCALARS = (str, int, float, bool, type(None))


def to_json_value(value: Any) -> Any:
    """
    Reduce ``value`` to plain JSON types (dict, list, str, number, bool, None).

    Raises:
        TypeError: for a value with no canonical JSON form.
    """
    if isinstance(value, Enum):
        return to_json_value(value.value)
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, PurePath)):
        return str(value)
    raise TypeError(f"{type(value).__name__} has no canonical JSON form")


def canonical_json(value: Any) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(to_json_value(value), sort_keys=True, separators=(",", ":"))


def fingerprint(value: Any) -> str:
    """Hex SHA-256 of ``canonical_json(value)``."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()
