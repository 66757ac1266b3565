"""Retry policy with exponential backoff for durable notification jobs.

Failed jobs are not retried in-process. The policy decides whether a failed
job may be claimed again and computes the earliest instant for that next
attempt, which the worker stores on the job row.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Tuple, Type, Union

ExceptionTypes = Union[Type[Exception], Tuple[Type[Exception], ...]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay: Delay before the first retry in seconds.
        max_delay: Maximum delay between retries in seconds.
        backoff_multiplier: Multiplier for exponential backoff.
        jitter: Random jitter as a fraction of the delay (0 disables it).
        non_retryable_exceptions: Exception types that exhaust the job at once.
    """
    max_attempts: int = 3
    base_delay: float = 300.0
    max_delay: float = 3600.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.0
    non_retryable_exceptions: ExceptionTypes = ()

    @classmethod
    def from_settings(cls, digest_settings, non_retryable_exceptions: ExceptionTypes = ()) -> "RetryConfig":
        return cls(
            max_attempts=digest_settings.max_attempts,
            base_delay=digest_settings.retry_base_delay_seconds,
            max_delay=digest_settings.retry_max_delay_seconds,
            backoff_multiplier=digest_settings.retry_backoff_multiplier,
            non_retryable_exceptions=non_retryable_exceptions,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number.

        Args:
            attempt: Number of attempts made so far (1-indexed).

        Returns:
            Delay in seconds with exponential backoff and jitter.
        """
        # Exponential backoff
        delay = self.base_delay * (self.backoff_multiplier ** (attempt - 1))

        # Cap at max delay
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)
            delay = max(0.0, delay)

        return delay

    def should_retry(self, exception: Exception) -> bool:
        """Determine if an exception leaves the job retryable."""
        if self.non_retryable_exceptions and isinstance(exception, self.non_retryable_exceptions):
            return False
        return getattr(exception, "retryable", True)

    def can_attempt(self, attempt_count: int) -> bool:
        """True while a job with ``attempt_count`` attempts may be claimed again."""
        return attempt_count < self.max_attempts

    def next_attempt_at(self, now: datetime, attempt_count: int) -> datetime:
        """Earliest instant the job may be re-claimed after ``attempt_count`` failures."""
        return now + timedelta(seconds=self.calculate_delay(attempt_count))
