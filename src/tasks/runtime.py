"""
Process assembly for the digest pipeline.

Entry points (run.py, Celery task bodies) build the scheduler and worker
here; the core classes only receive their collaborators.

``serve`` runs a scheduler thread and the worker loop in one process and
drains gracefully on SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Optional

from sqlalchemy.orm import sessionmaker

from config.settings import Settings, get_settings
from database.connection import get_sync_session_factory
from digest.renderer import DigestRenderer
from notifications.email_provider import EmailProvider, create_email_provider
from tasks.delivery_worker import DeliveryWorker
from tasks.digest_scheduler import DigestScheduler

logger = logging.getLogger(__name__)


def build_scheduler(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
) -> DigestScheduler:
    settings = settings or get_settings()
    return DigestScheduler(session_factory or get_sync_session_factory(), settings.digest)


def build_worker(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    email_provider: Optional[EmailProvider] = None,
) -> DeliveryWorker:
    """
    Assemble a DeliveryWorker from settings.

    Raises:
        ConfigurationError: the configured email provider lacks credentials
    """
    settings = settings or get_settings()
    digest = settings.digest
    return DeliveryWorker(
        session_factory=session_factory or get_sync_session_factory(),
        email_provider=email_provider or create_email_provider(settings.email),
        renderer=DigestRenderer(brand_name=digest.brand_name, subject=digest.subject),
        settings=digest,
    )


def run_scheduler_loop(scheduler: DigestScheduler, stop_event: threading.Event, interval_seconds: float) -> None:
    """Run a scheduling pass immediately and then every ``interval_seconds``."""
    logger.info(f"Scheduler thread started (every {interval_seconds:.0f}s)")
    while not stop_event.is_set():
        try:
            scheduler.run_scheduling_pass()
        except Exception as e:
            logger.exception(f"Scheduling pass failed: {e}")
        stop_event.wait(interval_seconds)
    logger.info("Scheduler thread stopped")


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM."""

    def handle(signum, frame):
        logger.info(f"Received signal {signum}, finishing in-flight work")
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def serve(
    settings: Optional[Settings] = None,
    stop_event: Optional[threading.Event] = None,
    with_scheduler: bool = True,
) -> None:
    """
    Run the scheduler thread and the worker loop until stopped.

    Args:
        settings: Application settings
        stop_event: External stop signal; signal handlers are installed
            when omitted
        with_scheduler: Also run the scheduling thread in this process
    """
    settings = settings or get_settings()
    if stop_event is None:
        stop_event = threading.Event()
        install_signal_handlers(stop_event)

    worker = build_worker(settings)

    scheduler_thread = None
    if with_scheduler:
        scheduler_thread = threading.Thread(
            target=run_scheduler_loop,
            args=(build_scheduler(settings), stop_event, settings.digest.scheduler_interval_minutes * 60),
            name="digest-scheduler",
            daemon=True,
        )
        scheduler_thread.start()

    try:
        worker.run_forever(stop_event)
    finally:
        stop_event.set()
        if scheduler_thread is not None:
            scheduler_thread.join(timeout=30)
