"""
Delivery error taxonomy.

- TransientJobError: retried on a later poll until the attempt ceiling
- PermanentJobError: recorded failed at the ceiling, never retried
- ConfigurationError: raised at startup only (see config.settings)
"""

from typing import Optional

from config.settings import ConfigurationError


class JobError(Exception):
    """Base class for failures while processing a notification job."""

    retryable = True

    def __init__(self, message: str, job_id: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message)


class TransientJobError(JobError):
    """Data store or provider temporarily unavailable."""
    retryable = True


class EmailDeliveryError(TransientJobError):
    """The email provider rejected or failed to accept a message."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        self.provider = provider
        self.error_code = error_code
        super().__init__(message)


class PermanentJobError(JobError):
    """The job can never succeed without manual intervention."""
    retryable = False


class RecipientNotFoundError(PermanentJobError):
    """The job references a recipient that no longer exists."""

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Recipient {user_id} not found")


def describe_error(exc: BaseException, limit: int = 500) -> str:
    """Short diagnostic stored on the job: '<ExceptionType>: <message>'."""
    text = f"{type(exc).__name__}: {exc}"
    return text[:limit]


__all__ = [
    "ConfigurationError",
    "JobError",
    "TransientJobError",
    "EmailDeliveryError",
    "PermanentJobError",
    "RecipientNotFoundError",
    "describe_error",
]
