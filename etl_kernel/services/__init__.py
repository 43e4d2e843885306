"""Services for the ETL kernel."""

from etl_kernel.services.sequence_service import SequenceService

__all__ = [
    "SequenceService",
]
