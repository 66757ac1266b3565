"""
Delivery Worker - claims notification jobs and sends digests.

Each job goes through:
    claim -> resolve recipient -> fetch live tasks -> aggregate -> render
          -> send -> record outcome

The claim is a conditional UPDATE, so any number of worker processes can
poll the same table; only the claimant transitions a job. Every database
step uses its own short session so no transaction is held open across the
provider call.
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from config.settings import DigestSettings
from database.connection import session_scope
from database.repositories import DirectoryRepository, NotificationJobRepository, TaskRepository
from digest.renderer import DigestRenderer
from digest.summary import summarize_tasks
from digest.timezones import ensure_aware_utc, resolve_timezone, utcnow
from notifications.email_provider import EmailProvider
from notifications.errors import PermanentJobError, RecipientNotFoundError, describe_error
from resilience.retry import RetryConfig
from services.logging_config import get_logger, job_context

logger = get_logger(__name__, component="worker")


class JobOutcome(str, Enum):
    """Result of handling one job in a batch."""
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_CLAIMED = "not_claimed"
    ERROR = "error"


@dataclass(frozen=True)
class JobRef:
    """Detached identity of a job fetched for processing."""
    job_id: UUID
    user_id: UUID
    firm_id: UUID
    attempt_count: int


@dataclass
class DigestContent:
    """A rendered digest ready to send."""
    to: str
    subject: str
    html: str
    variant: str
    task_count: int


@dataclass
class BatchReport:
    """Summary of one worker batch."""
    started_at: datetime
    fetched: int = 0
    outcomes: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def count(self, outcome: JobOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome.value)

    @property
    def sent(self) -> int:
        return self.count(JobOutcome.SENT)

    @property
    def failed(self) -> int:
        return self.count(JobOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(JobOutcome.SKIPPED)

    @property
    def not_claimed(self) -> int:
        return self.count(JobOutcome.NOT_CLAIMED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "fetched": self.fetched,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "not_claimed": self.not_claimed,
            "errors": list(self.errors),
            "outcomes": dict(self.outcomes),
        }


class DeliveryWorker:
    """
    Polls the job queue and delivers digests.

    Args:
        session_factory: SQLAlchemy sessionmaker
        email_provider: Provider used for sending
        renderer: Digest HTML renderer
        settings: Digest settings (batch size, retry policy, pacing, roles)
        retry_config: Override for the retry policy derived from settings
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        email_provider: EmailProvider,
        renderer: DigestRenderer,
        settings: DigestSettings,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.session_factory = session_factory
        self.email_provider = email_provider
        self.renderer = renderer
        self.settings = settings
        self.retry_config = retry_config or RetryConfig.from_settings(
            settings, non_retryable_exceptions=(PermanentJobError,)
        )

    # =========================================================================
    # LOOP
    # =========================================================================

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Process batches until ``stop_event`` is set.

        The event is checked between jobs, so a job that has started
        (including its send) always finishes.
        """
        logger.info("Delivery worker started")
        while not stop_event.is_set():
            try:
                report = self.run_worker_batch(stop_event=stop_event)
            except Exception as e:
                logger.exception(f"Worker batch failed: {e}")
                stop_event.wait(self.settings.error_backoff_seconds)
                continue

            if report.fetched == 0:
                stop_event.wait(self.settings.poll_interval_seconds)
        logger.info("Delivery worker stopped")

    def drain(self, max_batches: int = 1000) -> List[BatchReport]:
        """Run batches until no eligible job is left."""
        reports = []
        for _ in range(max_batches):
            report = self.run_worker_batch()
            reports.append(report)
            if report.fetched == 0:
                break
        return reports

    def run_worker_batch(
        self,
        now: Optional[datetime] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        """
        Claim and process up to ``batch_size`` eligible jobs.

        Args:
            now: Instant used for eligibility and bookkeeping (defaults to
                the wall clock, read per job)
            stop_event: Stops the batch between jobs when set

        Returns:
            BatchReport with one outcome per fetched job

        Raises:
            Exception: the eligibility query itself failed
        """
        fixed_now = ensure_aware_utc(now) if now else None
        report = BatchReport(started_at=fixed_now or utcnow())

        with session_scope(self.session_factory) as session:
            jobs = [
                JobRef(job.job_id, job.user_id, job.firm_id, job.attempt_count)
                for job in NotificationJobRepository(session).find_eligible(
                    report.started_at, self.retry_config.max_attempts, self.settings.batch_size
                )
            ]
        report.fetched = len(jobs)

        for index, job in enumerate(jobs):
            if stop_event is not None and stop_event.is_set():
                logger.info("Stop requested, leaving remaining jobs for the next worker")
                break

            try:
                outcome = self.process_job(job, fixed_now or utcnow())
            except Exception as e:
                # Bookkeeping failed; the job stays processing until released
                logger.exception(f"Unexpected error handling job {job.job_id}: {e}")
                report.errors.append(f"{job.job_id}: {describe_error(e)}")
                outcome = JobOutcome.ERROR
            report.outcomes[str(job.job_id)] = outcome.value

            if outcome == JobOutcome.SENT and index < len(jobs) - 1:
                self._pace(stop_event)

        if report.fetched:
            logger.info(
                f"Worker batch complete: fetched={report.fetched} sent={report.sent} "
                f"failed={report.failed} skipped={report.skipped} not_claimed={report.not_claimed}"
            )
        return report

    def _pace(self, stop_event: Optional[threading.Event]) -> None:
        low = self.settings.send_pacing_min_seconds
        high = self.settings.send_pacing_max_seconds
        if high <= 0:
            return
        wait = random.uniform(low, high)
        logger.debug(f"Pacing: sleeping for {wait:.1f}s")
        if stop_event is not None:
            stop_event.wait(wait)
        else:
            time.sleep(wait)

    # =========================================================================
    # SINGLE JOB
    # =========================================================================

    def process_job(self, job: JobRef, now: datetime) -> JobOutcome:
        """Claim one job and carry it to a recorded outcome."""
        with job_context(job_id=job.job_id, firm_id=job.firm_id, recipient_id=job.user_id):
            with session_scope(self.session_factory) as session:
                claimed = NotificationJobRepository(session).claim(
                    job.job_id, now, self.retry_config.max_attempts
                )
            if not claimed:
                logger.debug(f"Job {job.job_id} already claimed elsewhere")
                return JobOutcome.NOT_CLAIMED

            logger.info(f"EMAIL_JOB_STARTED job={job.job_id} user={job.user_id} attempt={job.attempt_count + 1}")

            try:
                content = self.build_digest(job, now)
                if content is None:
                    with session_scope(self.session_factory) as session:
                        NotificationJobRepository(session).mark_skipped(job.job_id, now, "recipient inactive")
                    logger.info(f"EMAIL_SKIPPED user {job.user_id} is inactive")
                    return JobOutcome.SKIPPED

                delivery_id = self.email_provider.send_html(content.to, content.subject, content.html)
            except Exception as e:
                self._record_failure(job, now, e)
                return JobOutcome.FAILED

            with session_scope(self.session_factory) as session:
                NotificationJobRepository(session).mark_sent(job.job_id, now, delivery_id)
            logger.info(
                f"EMAIL_SENT job={job.job_id} to={content.to} variant={content.variant} "
                f"tasks={content.task_count} delivery_id={delivery_id}"
            )
            return JobOutcome.SENT

    def build_digest(self, job: JobRef, now: datetime) -> Optional[DigestContent]:
        """
        Fetch live task data and render the recipient's digest.

        Returns:
            DigestContent, or None when the recipient is inactive

        Raises:
            RecipientNotFoundError: the recipient no longer exists
        """
        with session_scope(self.session_factory) as session:
            directory = DirectoryRepository(session)
            recipient = directory.get_recipient(job.user_id)
            if recipient is None:
                raise RecipientNotFoundError(job.user_id)
            if not recipient.is_active:
                return None

            firm = directory.get_firm(job.firm_id)
            tz, _ = resolve_timezone(firm.timezone if firm else None, self.settings.default_timezone)
            tasks = TaskRepository(session)

            if self.settings.is_manager_role(recipient.role):
                personal = summarize_tasks(tasks.open_tasks_created_by(recipient.user_id, job.firm_id), now, tz.zone)
                firm_wide = summarize_tasks(tasks.open_tasks_for_firm(job.firm_id), now, tz.zone)
                html = self.renderer.render_aggregate(recipient.display_name, personal, firm_wide, tz.zone)
                variant, task_count = "aggregate", personal.total_count + firm_wide.total_count
            else:
                summary = summarize_tasks(tasks.open_tasks_for_assignee(recipient.user_id), now, tz.zone)
                html = self.renderer.render_individual(recipient.display_name, summary, tz.zone)
                variant, task_count = "individual", summary.total_count

            return DigestContent(
                to=recipient.email,
                subject=self.settings.subject,
                html=html,
                variant=variant,
                task_count=task_count,
            )

    def _record_failure(self, job: JobRef, now: datetime, exc: Exception) -> None:
        error = describe_error(exc)
        attempts = job.attempt_count + 1

        if self.retry_config.should_retry(exc):
            next_attempt_at = self.retry_config.next_attempt_at(now, attempts)
            attempt_floor = None
        else:
            next_attempt_at = None
            attempt_floor = self.retry_config.max_attempts

        with session_scope(self.session_factory) as session:
            NotificationJobRepository(session).mark_failed(
                job.job_id, now, error,
                next_attempt_at=next_attempt_at,
                attempt_floor=attempt_floor,
            )

        exhausted = attempt_floor is not None or not self.retry_config.can_attempt(attempts)
        logger.error(
            f"EMAIL_FAILED job={job.job_id} attempt={attempts} error={error}"
            + (" (no retries left)" if exhausted else f" (retry after {next_attempt_at.isoformat()})"),
            extra={"extra_data": {"exhausted": exhausted}},
        )
