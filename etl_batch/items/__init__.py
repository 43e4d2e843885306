"""Item readers and writers for the chunk-oriented step."""

from etl_batch.items.base import ItemReader, ItemWriter
from etl_batch.items.database import SqlBatchItemWriter, SqlCursorItemReader
from etl_batch.items.flat_file import (
    DelimitedLineAggregator,
    DelimitedRecordMapper,
    FlatFileItemReader,
    FlatFileItemWriter,
)

__all__ = [
    "ItemReader",
    "ItemWriter",
    "DelimitedLineAggregator",
    "DelimitedRecordMapper",
    "FlatFileItemReader",
    "FlatFileItemWriter",
    "SqlBatchItemWriter",
    "SqlCursorItemReader",
]
