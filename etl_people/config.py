"""
Configuration for the people ETL (``etl_people.config``).

Loads a YAML file into a frozen ``EtlConfig``::

    input: data/people.csv
    output: out/age_counts.csv
    database_url: sqlite:///etl.db
    delimiter: ","          # optional

Relative ``input`` / ``output`` paths resolve against the directory that
holds the YAML file.  The ``ETL_DATABASE_URL`` environment variable, when
set, replaces ``database_url``.

Failure modes:
    - Missing file  -> ``ConfigurationError`` (key ``path``).
    - Malformed YAML  -> ``ConfigurationError`` wrapping the parser error.
    - Missing or empty required key  -> ``ConfigurationError`` naming it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from etl_kernel.exceptions import ConfigurationError
from etl_kernel.logging_config import get_logger

logger = get_logger("people.config")

DATABASE_URL_ENV = "ETL_DATABASE_URL"

_REQUIRED = ("input", "output", "database_url")


@dataclass(frozen=True)
class EtlConfig:
    """Resolved settings for one ETL run."""

    input_path: Path
    output_path: Path
    database_url: str
    delimiter: str = ","


def parse_config(
    data: Mapping[str, Any],
    base_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> EtlConfig:
    """Build an EtlConfig from an already-parsed mapping."""
    env = os.environ if environ is None else environ
    values = dict(data)
    override = env.get(DATABASE_URL_ENV)
    if override:
        values["database_url"] = override

    for key in _REQUIRED:
        value = values.get(key)
        if value is None or str(value).strip() == "":
            raise ConfigurationError(key, "required key is missing")

    delimiter = str(values.get("delimiter", ","))
    if len(delimiter) != 1:
        raise ConfigurationError(
            "delimiter", f"must be a single character, got {delimiter!r}",
        )

    return EtlConfig(
        input_path=_resolve(values["input"], base_dir),
        output_path=_resolve(values["output"], base_dir),
        database_url=str(values["database_url"]),
        delimiter=delimiter,
    )


def load_config(path: Path | str, environ: Mapping[str, str] | None = None) -> EtlConfig:
    """
    Load and validate the YAML configuration at ``path``.

    Raises:
        ConfigurationError: if the file is missing, unparsable, or lacks a
            required key.
    """
    config_path = Path(path)
    try:
        with config_path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError("path", f"file not found: {config_path}") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError("path", f"invalid YAML in {config_path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("path", f"{config_path} must contain a mapping")

    config = parse_config(data, base_dir=config_path.parent, environ=environ)
    logger.info(
        "config_loaded",
        extra={
            "path": str(config_path),
            "input": str(config.input_path),
            "output": str(config.output_path),
        },
    )
    return config


def _resolve(value: Any, base_dir: Path | None) -> Path:
    path = Path(str(value)).expanduser()
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    return path
