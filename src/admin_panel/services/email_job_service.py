"""
Email Job Service - operational visibility into digest delivery.

Handles:
- Job status per firm and date
- Latest job for a recipient
- Status counts and exhausted (terminally failed) jobs
- Requeueing failed jobs and releasing stale claims

Not in the delivery hot path.
"""

from typing import Any, Dict, Iterable, List, Optional, Union
from datetime import date, datetime, timedelta
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from config.settings import DigestSettings
from database.connection import session_scope
from database.models import StaffUser
from database.repositories import DirectoryRepository, NotificationJobRepository
from digest.timezones import ensure_aware_utc, utcnow


logger = logging.getLogger(__name__)

IdLike = Union[str, UUID]


def _as_uuid(value: IdLike) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class EmailJobService:
    """Service for inspecting and repairing the notification job queue."""

    def __init__(self, session_factory: sessionmaker, settings: DigestSettings):
        self.session_factory = session_factory
        self.settings = settings

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_email_status(self, firm_id: IdLike, scheduled_date: date) -> List[Dict[str, Any]]:
        """Jobs of a firm for one local date, with recipient details."""
        with session_scope(self.session_factory) as session:
            jobs = NotificationJobRepository(session).list_for_firm_date(_as_uuid(firm_id), scheduled_date)
            user_ids = {job.user_id for job in jobs}
            users = {}
            if user_ids:
                result = session.execute(select(StaffUser).where(StaffUser.user_id.in_(user_ids)))
                users = {user.user_id: user for user in result.scalars().all()}

            rows = []
            for job in jobs:
                row = job.to_dict()
                user = users.get(job.user_id)
                row["recipient_name"] = user.full_name if user else None
                row["recipient_email"] = user.email if user else None
                rows.append(row)
            return rows

    def get_latest_job_for_user(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Look up a recipient by email and return their newest job.

        Returns:
            {"user": {...}, "job": {...} or None}, or None if no such user
        """
        with session_scope(self.session_factory) as session:
            user = DirectoryRepository(session).find_recipient_by_email(email)
            if user is None:
                return None

            job = NotificationJobRepository(session).latest_for_user(user.user_id)
            return {
                "user": {
                    "user_id": str(user.user_id),
                    "firm_id": str(user.firm_id),
                    "full_name": user.full_name,
                    "email": user.email,
                    "role": user.role,
                    "is_active": user.is_active,
                },
                "job": job.to_dict() if job else None,
            }

    def status_counts(
        self,
        firm_id: Optional[IdLike] = None,
        scheduled_date: Optional[date] = None,
    ) -> Dict[str, int]:
        """Job counts per status, optionally for one firm and/or date."""
        with session_scope(self.session_factory) as session:
            return NotificationJobRepository(session).count_by_status(
                firm_id=_as_uuid(firm_id) if firm_id else None,
                scheduled_date=scheduled_date,
            )

    def list_exhausted_jobs(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Failed jobs that will not be retried automatically."""
        with session_scope(self.session_factory) as session:
            jobs = NotificationJobRepository(session).list_exhausted(self.settings.max_attempts, limit)
            return [job.to_dict() for job in jobs]

    # =========================================================================
    # REPAIR
    # =========================================================================

    def requeue_jobs(self, job_ids: Iterable[IdLike], now: Optional[datetime] = None) -> int:
        """Reset jobs to pending with a fresh attempt budget."""
        ids = [_as_uuid(job_id) for job_id in job_ids]
        with session_scope(self.session_factory) as session:
            count = NotificationJobRepository(session).requeue(ids, ensure_aware_utc(now) if now else utcnow())
        logger.info(f"Requeued {count} notification jobs")
        return count

    def requeue_failed(
        self,
        firm_id: Optional[IdLike] = None,
        scheduled_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Requeue every failed job, optionally for one firm and/or date."""
        with session_scope(self.session_factory) as session:
            jobs = NotificationJobRepository(session)
            ids = jobs.list_failed_ids(
                firm_id=_as_uuid(firm_id) if firm_id else None,
                scheduled_date=scheduled_date,
            )
            count = jobs.requeue(ids, ensure_aware_utc(now) if now else utcnow())
        logger.info(f"Requeued {count} failed notification jobs")
        return count

    def release_stale_claims(
        self,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Fail jobs stuck in processing longer than ``older_than``.

        A worker that crashed after claiming leaves its job in processing;
        releasing it counts one attempt and makes it retryable under the
        normal ceiling.
        """
        now = ensure_aware_utc(now) if now else utcnow()
        older_than = older_than or timedelta(minutes=self.settings.stale_claim_minutes)
        with session_scope(self.session_factory) as session:
            count = NotificationJobRepository(session).release_stale(now - older_than, now)
        if count:
            logger.warning(f"Released {count} stale claims older than {older_than}")
        return count
