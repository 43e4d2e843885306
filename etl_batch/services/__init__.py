"""
etl_batch.services -- Repository, step, job and launcher.

Architecture: etl_batch/services.  Imports from etl_batch.domain,
etl_batch.models, etl_batch.items and kernel infrastructure.
"""

from etl_batch.services.job import Job, RunIdIncrementer
from etl_batch.services.launcher import JobLauncher
from etl_batch.services.repository import (
    RUN_ID_KEY,
    JobRepository,
    normalize_parameters,
)
from etl_batch.services.step import DEFAULT_CHUNK_SIZE, ChunkOrientedStep

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "RUN_ID_KEY",
    "ChunkOrientedStep",
    "Job",
    "JobLauncher",
    "JobRepository",
    "RunIdIncrementer",
    "normalize_parameters",
]
