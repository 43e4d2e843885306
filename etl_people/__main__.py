"""
Run the people ETL.

Reads the YAML configuration named by ETL_CONFIG (default ``etl.yaml``),
launches the ``etl`` job, and exits 0 when it COMPLETED, 1 otherwise.

Usage:
    python -m etl_people
    ETL_CONFIG=conf/etl.yaml ETL_DATABASE_URL=sqlite:///run.db python -m etl_people
"""

import os
import sys

from etl_kernel.exceptions import EtlKernelError, describe_error

from etl_batch.domain.types import BatchStatus
from etl_people.config import load_config
from etl_people.pipeline import launch

CONFIG_ENV = "ETL_CONFIG"
DEFAULT_CONFIG = "etl.yaml"


def main() -> int:
    path = os.environ.get(CONFIG_ENV, DEFAULT_CONFIG)
    try:
        execution = launch(load_config(path))
    except EtlKernelError as exc:
        print(f"ERROR: {describe_error(exc)}", file=sys.stderr)
        return 1

    status = BatchStatus(execution.status)
    print(f"Job execution {execution.execution_id}: {status.value}")
    if status != BatchStatus.COMPLETED:
        if execution.exit_message:
            print(execution.exit_message, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
