"""
Services Module - cross-cutting infrastructure for the practice digest service.

Infrastructure Services:
- Logging and observability (structured logs with job correlation ids)
"""

from .logging_config import configure_logging, get_logger, job_context

__all__ = [
    "configure_logging",
    "get_logger",
    "job_context",
]
