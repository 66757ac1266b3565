"""
Celery App Configuration - Background task processing with Redis broker.

Configures Celery for:
- The digest scheduling pass (every 15 minutes)
- Worker batches (every minute)
- Stale claim release (hourly)

Usage:
    # Run worker
    celery -A tasks.celery_app worker --loglevel=info

    # Run with beat scheduler
    celery -A tasks.celery_app worker --beat --loglevel=info
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import Celery, Task
from celery.schedules import crontab
from celery.signals import (
    task_failure,
    task_postrun,
    task_prerun,
    worker_init,
    worker_ready,
    worker_shutdown,
)

from config.settings import get_settings, validate_startup_configuration, CelerySettings, RedisSettings

logger = logging.getLogger(__name__)


def build_beat_schedule(celery_settings: CelerySettings, scheduler_interval_minutes: int) -> Dict[str, Any]:
    """Periodic tasks for the digest pipeline."""
    if not celery_settings.beat_enabled:
        return {}
    return {
        "digest-scheduling-pass": {
            "task": "tasks.digest_tasks.run_scheduling_pass_task",
            "schedule": crontab(minute=f"*/{scheduler_interval_minutes}"),
        },
        "digest-worker-batch": {
            "task": "tasks.digest_tasks.run_worker_batch_task",
            "schedule": celery_settings.worker_batch_schedule_seconds,
        },
        "digest-release-stale-claims": {
            "task": "tasks.digest_tasks.release_stale_claims_task",
            "schedule": 3600.0,  # Every hour
        },
    }


def create_celery_app(
    redis_settings: Optional[RedisSettings] = None,
    celery_settings: Optional[CelerySettings] = None,
) -> Celery:
    """
    Create and configure a Celery application.

    Args:
        redis_settings: Redis connection settings
        celery_settings: Celery configuration settings

    Returns:
        Configured Celery application
    """
    settings = get_settings()
    redis_settings = redis_settings or settings.redis
    celery_settings = celery_settings or settings.celery

    # Build broker and backend URLs
    auth = f":{redis_settings.password}@" if redis_settings.password else ""
    protocol = "rediss" if redis_settings.ssl else "redis"
    base_url = f"{protocol}://{auth}{redis_settings.host}:{redis_settings.port}"

    broker_url = f"{base_url}/{celery_settings.broker_db}"
    result_backend = f"{base_url}/{celery_settings.result_db}"

    app = Celery(
        "practice_digest",
        broker=broker_url,
        backend=result_backend,
        include=[
            "tasks.digest_tasks",
        ],
    )

    app.conf.update(
        # Serialization
        task_serializer=celery_settings.task_serializer,
        result_serializer=celery_settings.result_serializer,
        accept_content=celery_settings.accept_content,
        result_accept_content=celery_settings.accept_content,

        # Task acknowledgment
        task_acks_late=celery_settings.task_acks_late,
        task_reject_on_worker_lost=celery_settings.task_reject_on_worker_lost,

        # Worker settings
        worker_prefetch_multiplier=celery_settings.worker_prefetch_multiplier,

        # Time limits
        task_time_limit=celery_settings.task_time_limit,
        task_soft_time_limit=celery_settings.task_soft_time_limit,

        # Result settings
        result_expires=3600,  # Results expire after 1 hour

        # Timezone (firm-local windows are computed per firm)
        timezone="UTC",
        enable_utc=True,

        beat_schedule=build_beat_schedule(celery_settings, settings.digest.scheduler_interval_minutes),
    )

    return app


# Global Celery app instance
celery_app = create_celery_app()


class TaskBase(Task):
    """
    Base task class with lifecycle logging.

    Digest tasks do not use Celery retries: failed jobs are retried by the
    next worker batch through the job table.
    """

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            extra={"extra_data": {
                "task_id": task_id,
                "task_name": self.name,
                "exception": str(exc),
            }},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        """Handle task success."""
        logger.info(
            f"Task {self.name}[{task_id}] succeeded",
            extra={"extra_data": {
                "task_id": task_id,
                "task_name": self.name,
            }},
        )
        super().on_success(retval, task_id, args, kwargs)


# Register base task class
celery_app.Task = TaskBase


# Signal handlers for monitoring
@worker_init.connect
def on_worker_init(sender=None, **kwargs):
    """Refuse to start a worker whose configuration is invalid."""
    # SystemExit is not swallowed by signal dispatch, so the worker aborts
    validate_startup_configuration(get_settings())
    logger.info("Startup configuration validated")


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """Log when worker is ready."""
    logger.info(f"Celery worker ready: {sender}")


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    """Log when worker shuts down."""
    logger.info(f"Celery worker shutting down: {sender}")


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **other):
    """Log task start."""
    logger.debug(f"Task starting: {task.name}[{task_id}]")


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **other):
    """Log task completion."""
    logger.debug(f"Task completed: {task.name}[{task_id}] state={state}")


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **other):
    """Log the failing task with its arguments."""
    task = other.get("sender")
    logger.error(
        f"Task failure: {task.name if task else 'unknown'}[{task_id}] - {exception}",
        extra={"extra_data": {"task_id": task_id, "args": args, "kwargs": kwargs}},
    )


def get_task_info(task_id: str) -> Dict[str, Any]:
    """
    Get information about a task.

    Args:
        task_id: Celery task ID

    Returns:
        Dict with task status and result
    """
    result = celery_app.AsyncResult(task_id)

    info = {
        "task_id": task_id,
        "status": result.status,
        "ready": result.ready(),
    }

    if result.ready():
        if result.successful():
            info["result"] = result.result
        elif result.failed():
            info["error"] = str(result.result)

    return info
