"""
Digest Celery tasks.

Thin wrappers that assemble the pipeline from settings and return the
reports as JSON-serializable dicts.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from config.settings import get_settings
from database.connection import get_sync_session_factory
from admin_panel.services.email_job_service import EmailJobService
from tasks.celery_app import celery_app
from tasks.runtime import build_scheduler, build_worker

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.digest_tasks.run_scheduling_pass_task")
def run_scheduling_pass_task() -> Dict[str, Any]:
    """Create day-end jobs for firms currently inside their window."""
    report = build_scheduler().run_scheduling_pass()
    return report.to_dict()


@celery_app.task(name="tasks.digest_tasks.run_worker_batch_task")
def run_worker_batch_task() -> Dict[str, Any]:
    """Claim and deliver one batch of eligible jobs."""
    report = build_worker().run_worker_batch()
    return report.to_dict()


@celery_app.task(name="tasks.digest_tasks.release_stale_claims_task")
def release_stale_claims_task() -> Dict[str, Any]:
    """Fail jobs whose worker died mid-processing so they are retried."""
    settings = get_settings().digest
    service = EmailJobService(get_sync_session_factory(), settings)
    released = service.release_stale_claims(timedelta(minutes=settings.stale_claim_minutes))
    if released:
        logger.warning(f"Released {released} stale job claims")
    return {"released": released}
