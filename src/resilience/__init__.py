"""Resilience patterns for durable notification delivery.

Provides the retry policy with exponential backoff used to decide when a
failed notification job may be attempted again.
"""

from .retry import RetryConfig

__all__ = [
    "RetryConfig",
]
