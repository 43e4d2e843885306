"""
Typed exception hierarchy for the ETL kernel and batch engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A batch run fails for a handful of well-understood reasons: a record that
cannot be read, a chunk that cannot be written, a launch that collides with
an earlier run.  Callers (the launcher, operators, tests) must be able to
tell these apart without parsing message strings.

Every exception here therefore:
  1. Has its own class (catch by type, not message)
  2. Has a ``code`` class attribute (machine-readable, log-safe)
  3. Carries structured data as attributes (not just a message string)

Example::

    try:
        launcher.run(job, parameters)
    except DuplicateRunError as e:
        log.warning("already done", extra={"job": e.job_name})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EtlKernelError (base)
    |
    +-- BatchError
    |   +-- SourceReadError
    |   +-- SinkWriteError
    |   +-- StepSequencingError
    |   +-- DuplicateRunError
    |   +-- JobExecutionAlreadyRunningError
    |   +-- JobRestartError
    |   +-- JobExecutionNotFoundError
    |   +-- JobExecutionImmutableError
    |   +-- JobInterruptedError
    |
    +-- ConfigurationError
"""


class EtlKernelError(Exception):
    """
    Base exception for all ETL kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ETL_KERNEL_ERROR"


# Batch engine exceptions


class BatchError(EtlKernelError):
    """Base exception for batch engine errors."""

    code: str = "BATCH_ERROR"


class SourceReadError(BatchError):
    """An item could not be read from its source.

    Raised for malformed records, type conversion failures and I/O faults.
    ``position`` is the zero-based item offset within the source; file
    readers also supply the physical ``line_number`` and the raw ``line``.
    """

    code: str = "SOURCE_READ_ERROR"

    def __init__(
        self,
        reader_name: str,
        position: int,
        reason: str,
        line_number: int | None = None,
        line: str | None = None,
    ):
        self.reader_name = reader_name
        self.position = position
        self.reason = reason
        self.line_number = line_number
        self.line = line
        where = f"item {position}"
        if line_number is not None:
            where += f" (line {line_number})"
        super().__init__(f"Reader '{reader_name}' failed at {where}: {reason}")


class SinkWriteError(BatchError):
    """A chunk could not be written; the whole chunk was rolled back."""

    code: str = "SINK_WRITE_ERROR"

    def __init__(self, writer_name: str, chunk_size: int, reason: str):
        self.writer_name = writer_name
        self.chunk_size = chunk_size
        self.reason = reason
        super().__init__(
            f"Writer '{writer_name}' failed on a chunk of {chunk_size} item(s): "
            f"{reason}"
        )


class StepSequencingError(BatchError):
    """A step was started before its predecessor completed."""

    code: str = "STEP_SEQUENCING_ERROR"

    def __init__(self, step_name: str, predecessor: str, predecessor_status: str | None):
        self.step_name = step_name
        self.predecessor = predecessor
        self.predecessor_status = predecessor_status
        super().__init__(
            f"Step '{step_name}' cannot start: predecessor '{predecessor}' "
            f"is {predecessor_status or 'not started'}"
        )


class DuplicateRunError(BatchError):
    """The job instance identified by these parameters already completed."""

    code: str = "DUPLICATE_RUN"

    def __init__(self, job_name: str, job_key: str):
        self.job_name = job_name
        self.job_key = job_key
        super().__init__(
            f"Job '{job_name}' already completed for parameters {job_key[:12]}; "
            f"use a run-id incrementer or different parameters"
        )


class JobExecutionAlreadyRunningError(BatchError):
    """Another execution of the same job instance is still running."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str, execution_id: int):
        self.job_name = job_name
        self.execution_id = execution_id
        super().__init__(
            f"Job '{job_name}' is already running (execution {execution_id})"
        )


class JobRestartError(BatchError):
    """The job cannot be restarted (not restartable, or not in a restartable state)."""

    code: str = "JOB_RESTART_ERROR"

    def __init__(self, job_name: str, reason: str):
        self.job_name = job_name
        self.reason = reason
        super().__init__(f"Cannot restart job '{job_name}': {reason}")


class JobExecutionNotFoundError(BatchError):
    """No job execution exists with the given id."""

    code: str = "JOB_EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: int):
        self.execution_id = execution_id
        super().__init__(f"Job execution not found: {execution_id}")


class JobExecutionImmutableError(BatchError):
    """A job execution in a terminal status cannot be changed."""

    code: str = "JOB_EXECUTION_IMMUTABLE"

    def __init__(self, execution_id: int, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(
            f"Job execution {execution_id} is {status} and cannot be modified"
        )


class JobInterruptedError(BatchError):
    """A stop was requested while the step was running."""

    code: str = "JOB_INTERRUPTED"

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(f"Step '{step_name}' interrupted by a stop request")


# Configuration exceptions


class ConfigurationError(EtlKernelError):
    """Configuration is missing a required key or has an invalid value."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")


def describe_error(exc: BaseException) -> str:
    """``"CODE: message"`` for kernel errors, ``"TypeName: message"`` otherwise."""
    code = getattr(exc, "code", None) or type(exc).__name__
    return f"{code}: {exc}"
