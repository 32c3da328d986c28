"""
Job subsystem exceptions.

Exception Hierarchy:
    JobTypeNotFoundError (NotFoundError) - Unknown job type
    JobNotFoundError (NotFoundError) - Unknown job id
    SchemaValidationFailedError (ValidationError) - Payload doesn't match schema
    JobNotLeasedError (ConflictError) - Report from a worker not holding the lease
    JobNotInDeadLetterError (ConflictError) - Retry of a job outside the DLQ
    JobExecutionError (BaseApplicationError) - Handler-side failures
    ├── JobHandlerNotFoundError - No handler registered (permanent)
    └── JobTimeoutError - Handler exceeded the type's timeout
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)


class JobTypeNotFoundError(NotFoundError):
    default_error_code: str = "JOB_TYPE_NOT_FOUND"


class JobNotFoundError(NotFoundError):
    default_error_code: str = "JOB_NOT_FOUND"


class SchemaValidationFailedError(ValidationError):
    """
    Raised when a job payload doesn't match its registered schema.

    Every problem is collected before raising; details["errors"] lists one
    message per missing or mistyped field.

    Example:
        SchemaValidationFailedError(
            "Missing required field: batch_id; Missing required field: escrow_id",
            details={"errors": [...]},
        )
    """

    default_error_code: str = "SCHEMA_VALIDATION_FAILED"

    @property
    def errors(self) -> list[str]:
        return list(self.details.get("errors", []))


class JobNotLeasedError(ConflictError):
    default_error_code: str = "JOB_NOT_LEASED"


class JobNotInDeadLetterError(ConflictError):
    default_error_code: str = "JOB_NOT_IN_DLQ"


class JobExecutionError(BaseApplicationError):
    """Base for failures raised by the runner while executing a job."""

    default_error_code: str = "JOB_EXECUTION_FAILED"
    is_retryable: bool = True


class JobHandlerNotFoundError(JobExecutionError):
    default_error_code: str = "JOB_HANDLER_NOT_FOUND"
    is_retryable: bool = False


class JobTimeoutError(JobExecutionError):
    default_error_code: str = "JOB_TIMEOUT"


__all__ = [
    "JobExecutionError",
    "JobHandlerNotFoundError",
    "JobNotFoundError",
    "JobNotInDeadLetterError",
    "JobNotLeasedError",
    "JobTimeoutError",
    "JobTypeNotFoundError",
    "SchemaValidationFailedError",
]
