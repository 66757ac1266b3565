"""
Background Tasks Module - digest scheduling and delivery.

Provides:
- DigestScheduler: creates day-end jobs per firm-local window
- DeliveryWorker: claims jobs and sends digests
- Celery app and periodic tasks (import tasks.celery_app explicitly)
"""

from .digest_scheduler import DigestScheduler, SchedulingReport, FirmSchedulingResult
from .delivery_worker import BatchReport, DeliveryWorker, JobOutcome

__all__ = [
    "DigestScheduler",
    "SchedulingReport",
    "FirmSchedulingResult",
    "DeliveryWorker",
    "BatchReport",
    "JobOutcome",
]
