"""
People ETL job wiring and launch entry point.

Contract:
    ``build_job()`` assembles the two-step job ``etl``:

        file-db   FlatFileItemReader (first_name, age, email) -> Person
                  -> SqlBatchItemWriter INSERT INTO people
        db-file   SqlCursorItemReader age-count aggregation -> AgeCount
                  -> FlatFileItemWriter ``age,count`` lines

    ``launch()`` prepares the database and runs the job through the
    launcher's ``launch_next``, so a rerun after a failure resumes from the
    last committed chunk and a rerun after success starts a new run.

Architecture: etl_people (top-level).  Composes etl_batch components.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine, Row

from etl_kernel.db.engine import create_engine_for_url
from etl_kernel.domain.clock import Clock
from etl_kernel.logging_config import configure_logging, get_logger

from etl_batch.domain.types import JobExecution
from etl_batch.items.database import SqlBatchItemWriter, SqlCursorItemReader
from etl_batch.items.flat_file import (
    DelimitedLineAggregator,
    DelimitedRecordMapper,
    FlatFileItemReader,
    FlatFileItemWriter,
)
from etl_batch.orchestrator import BatchOrchestrator
from etl_batch.services.job import Job, RunIdIncrementer
from etl_batch.services.step import DEFAULT_CHUNK_SIZE, ChunkOrientedStep

import etl_people.models  # noqa: F401  registers the people table
from etl_people.config import EtlConfig
from etl_people.domain.records import AgeCount, Person

logger = get_logger("people.pipeline")

JOB_NAME = "etl"
FILE_TO_DB_STEP = "file-db"
DB_TO_FILE_STEP = "db-file"

PERSON_FIELDS = ("first_name", "age", "email")

INSERT_PERSON_SQL = (
    "INSERT INTO people (age, first_name, email) "
    "VALUES (:age, :first_name, :email)"
)

AGE_COUNT_SQL = (
    "SELECT COUNT(age) AS b, age AS a FROM people GROUP BY age ORDER BY age"
)


def map_age_count(row: Row, row_number: int) -> AgeCount:
    return AgeCount(age=int(row.a), count=int(row.b))


def extract_age_count(item: AgeCount) -> tuple[int, int]:
    return (item.age, item.count)


def build_file_to_db_step(
    config: EtlConfig, chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ChunkOrientedStep[Person, Person]:
    reader = FlatFileItemReader(
        "file-reader",
        config.input_path,
        field_names=PERSON_FIELDS,
        mapper=DelimitedRecordMapper(Person),
        delimiter=config.delimiter,
    )
    writer = SqlBatchItemWriter("jdbc-writer", INSERT_PERSON_SQL)
    return ChunkOrientedStep(FILE_TO_DB_STEP, reader, writer, chunk_size=chunk_size)


def build_db_to_file_step(
    config: EtlConfig, engine: Engine, chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> ChunkOrientedStep[AgeCount, AgeCount]:
    reader = SqlCursorItemReader(
        "jdbc-reader",
        engine,
        AGE_COUNT_SQL,
        row_mapper=map_age_count,
        fetch_size=chunk_size,
    )
    writer = FlatFileItemWriter(
        "file-writer",
        config.output_path,
        line_aggregator=DelimitedLineAggregator(
            extract_age_count, delimiter=config.delimiter,
        ),
    )
    return ChunkOrientedStep(DB_TO_FILE_STEP, reader, writer, chunk_size=chunk_size)


def build_job(
    config: EtlConfig, engine: Engine, chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Job:
    """The two-step ``etl`` job, with a run-id incrementer."""
    return Job(
        JOB_NAME,
        [
            build_file_to_db_step(config, chunk_size),
            build_db_to_file_step(config, engine, chunk_size),
        ],
        incrementer=RunIdIncrementer(),
    )


def job_parameters(config: EtlConfig) -> dict[str, str]:
    return {
        "input": str(config.input_path),
        "output": str(config.output_path),
    }


def launch(
    config: EtlConfig,
    clock: Clock | None = None,
    engine: Engine | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> JobExecution:
    """
    Run the people ETL described by ``config``.

    Creates the schema if needed and returns the terminal JobExecution.
    Launch-time rejections (e.g. an execution already running) raise.
    """
    configure_logging()
    owns_engine = engine is None
    if owns_engine:
        engine = create_engine_for_url(config.database_url)
    try:
        orchestrator = BatchOrchestrator.from_engine(engine, clock=clock)
        orchestrator.initialize_schema()
        job = build_job(config, engine, chunk_size)
        execution = orchestrator.launch(job, job_parameters(config))
    finally:
        if owns_engine:
            engine.dispose()
    logger.info(
        "etl_finished",
        extra={
            "job_execution_id": execution.execution_id,
            "status": execution.status,
            "exit_message": execution.exit_message,
        },
    )
    return execution
