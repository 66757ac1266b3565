"""
Admin Panel Services Layer.

Business logic for:
- Digest delivery status and queue repair
"""

from .email_job_service import EmailJobService

__all__ = [
    "EmailJobService",
]
