"""Notification Job Repository.

Durable job queue operations on the notification_jobs table:
- insert-or-ignore keyed by (user_id, job_type, scheduled_date)
- conditional claim (status guard in the UPDATE, rowcount decides ownership)
- outcome transitions, each guarded on status='processing'
- read queries for the admin service

Callers pass aware datetimes; rows store naive UTC.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, case, func, insert as generic_insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import JobStatus, NotificationJob
from digest.timezones import to_naive_utc

logger = logging.getLogger(__name__)

_CONFLICT_COLUMNS = ["user_id", "job_type", "scheduled_date"]


def _eligible(now: datetime, max_attempts: int):
    """Rows a worker may claim at ``now`` (naive UTC)."""
    return or_(
        and_(
            NotificationJob.status == JobStatus.PENDING.value,
            NotificationJob.scheduled_for <= now,
        ),
        and_(
            NotificationJob.status == JobStatus.FAILED.value,
            NotificationJob.attempt_count < max_attempts,
            or_(
                NotificationJob.next_attempt_at.is_(None),
                NotificationJob.next_attempt_at <= now,
            ),
        ),
    )


class NotificationJobRepository:
    """Repository for the notification job queue."""

    def __init__(self, session: Session):
        """
        Initialize repository with a session.

        Args:
            session: SQLAlchemy session.
        """
        self._session = session

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(
        self,
        user_id: UUID,
        firm_id: UUID,
        job_type: str,
        scheduled_date: date,
        scheduled_for: datetime,
    ) -> bool:
        """
        Create a pending job unless one exists for the same key.

        Returns:
            True if a row was inserted, False if the key already existed.
        """
        now = to_naive_utc(scheduled_for)
        values = dict(
            job_id=uuid4(),
            user_id=user_id,
            firm_id=firm_id,
            job_type=job_type,
            scheduled_for=now,
            scheduled_date=scheduled_date,
            status=JobStatus.PENDING.value,
            attempt_count=0,
            created_at=now,
            updated_at=now,
        )

        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(NotificationJob).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(NotificationJob).values(**values)
        else:
            return self._enqueue_with_savepoint(values)

        stmt = stmt.on_conflict_do_nothing(index_elements=_CONFLICT_COLUMNS)
        result = self._session.execute(stmt)
        return result.rowcount == 1

    def _enqueue_with_savepoint(self, values: dict) -> bool:
        # Dialects without ON CONFLICT: let the unique constraint reject the row
        try:
            with self._session.begin_nested():
                self._session.execute(generic_insert(NotificationJob).values(**values))
        except IntegrityError:
            return False
        return True

    # =========================================================================
    # CLAIM AND TRANSITIONS
    # =========================================================================

    def find_eligible(self, now: datetime, max_attempts: int, limit: int) -> List[NotificationJob]:
        """
        Jobs that may be claimed at ``now``, oldest first.

        Args:
            now: Current instant
            max_attempts: Retry ceiling for failed jobs
            limit: Maximum number of jobs returned
        """
        query = (
            select(NotificationJob)
            .where(_eligible(to_naive_utc(now), max_attempts))
            .order_by(NotificationJob.scheduled_for.asc(), NotificationJob.created_at.asc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    def claim(self, job_id: UUID, now: datetime, max_attempts: int) -> bool:
        """
        Atomically move an eligible job to processing.

        The eligibility predicate is part of the UPDATE, so of several
        concurrent claimants exactly one sees rowcount == 1.
        """
        naive_now = to_naive_utc(now)
        stmt = (
            update(NotificationJob)
            .where(NotificationJob.job_id == job_id)
            .where(_eligible(naive_now, max_attempts))
            .values(
                status=JobStatus.PROCESSING.value,
                claimed_at=naive_now,
                updated_at=naive_now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def _transition(self, job_id: UUID, **values) -> bool:
        stmt = (
            update(NotificationJob)
            .where(NotificationJob.job_id == job_id)
            .where(NotificationJob.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    def mark_sent(self, job_id: UUID, now: datetime, delivery_id: Optional[str]) -> bool:
        naive_now = to_naive_utc(now)
        return self._transition(
            job_id,
            status=JobStatus.SENT.value,
            sent_at=naive_now,
            delivery_id=delivery_id,
            last_error=None,
            next_attempt_at=None,
            updated_at=naive_now,
        )

    def mark_failed(
        self,
        job_id: UUID,
        now: datetime,
        error: str,
        next_attempt_at: Optional[datetime] = None,
        attempt_floor: Optional[int] = None,
    ) -> bool:
        """
        Record a failed attempt.

        Args:
            error: Diagnostic, truncated to 500 characters
            next_attempt_at: Earliest retry instant
            attempt_floor: Raise attempt_count to at least this value
                (used to exhaust jobs that can never succeed)
        """
        naive_now = to_naive_utc(now)
        attempts = NotificationJob.attempt_count + 1
        if attempt_floor is not None:
            attempts = case((attempts < attempt_floor, attempt_floor), else_=attempts)
        return self._transition(
            job_id,
            status=JobStatus.FAILED.value,
            attempt_count=attempts,
            last_error=(error or "")[:500],
            next_attempt_at=to_naive_utc(next_attempt_at) if next_attempt_at else None,
            updated_at=naive_now,
        )

    def mark_skipped(self, job_id: UUID, now: datetime, reason: str) -> bool:
        naive_now = to_naive_utc(now)
        return self._transition(
            job_id,
            status=JobStatus.SKIPPED.value,
            last_error=reason[:500],
            updated_at=naive_now,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, job_id: UUID) -> Optional[NotificationJob]:
        return self._session.get(NotificationJob, job_id)

    def list_for_firm_date(self, firm_id: UUID, scheduled_date: date) -> List[NotificationJob]:
        """All jobs of a firm for one local date, oldest first."""
        query = (
            select(NotificationJob)
            .where(NotificationJob.firm_id == firm_id)
            .where(NotificationJob.scheduled_date == scheduled_date)
            .order_by(NotificationJob.scheduled_for.asc(), NotificationJob.created_at.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def latest_for_user(self, user_id: UUID) -> Optional[NotificationJob]:
        query = (
            select(NotificationJob)
            .where(NotificationJob.user_id == user_id)
            .order_by(NotificationJob.scheduled_for.desc(), NotificationJob.created_at.desc())
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def count_by_status(
        self,
        firm_id: Optional[UUID] = None,
        scheduled_date: Optional[date] = None,
    ) -> Dict[str, int]:
        """Job counts per status, with every status present."""
        query = select(NotificationJob.status, func.count()).group_by(NotificationJob.status)
        if firm_id is not None:
            query = query.where(NotificationJob.firm_id == firm_id)
        if scheduled_date is not None:
            query = query.where(NotificationJob.scheduled_date == scheduled_date)

        counts = {status.value: 0 for status in JobStatus}
        for status, count in self._session.execute(query).all():
            counts[status] = count
        return counts

    def list_exhausted(self, max_attempts: int, limit: int = 100) -> List[NotificationJob]:
        """Failed jobs at the retry ceiling, most recent first."""
        query = (
            select(NotificationJob)
            .where(NotificationJob.status == JobStatus.FAILED.value)
            .where(NotificationJob.attempt_count >= max_attempts)
            .order_by(NotificationJob.updated_at.desc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    def list_failed_ids(
        self,
        firm_id: Optional[UUID] = None,
        scheduled_date: Optional[date] = None,
    ) -> List[UUID]:
        query = select(NotificationJob.job_id).where(NotificationJob.status == JobStatus.FAILED.value)
        if firm_id is not None:
            query = query.where(NotificationJob.firm_id == firm_id)
        if scheduled_date is not None:
            query = query.where(NotificationJob.scheduled_date == scheduled_date)
        return list(self._session.execute(query).scalars().all())

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def requeue(self, job_ids: Iterable[UUID], now: datetime) -> int:
        """
        Reset jobs to pending with a fresh attempt budget.

        Jobs currently being processed are left alone.

        Returns:
            Number of jobs reset.
        """
        job_ids = list(job_ids)
        if not job_ids:
            return 0
        naive_now = to_naive_utc(now)
        stmt = (
            update(NotificationJob)
            .where(NotificationJob.job_id.in_(job_ids))
            .where(NotificationJob.status != JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.PENDING.value,
                attempt_count=0,
                last_error=None,
                sent_at=None,
                delivery_id=None,
                claimed_at=None,
                next_attempt_at=None,
                updated_at=naive_now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount

    def release_stale(self, claimed_before: datetime, now: datetime) -> int:
        """
        Fail jobs stuck in processing since before ``claimed_before``.

        One attempt is counted so the normal retry ceiling applies.

        Returns:
            Number of jobs released.
        """
        naive_now = to_naive_utc(now)
        stmt = (
            update(NotificationJob)
            .where(NotificationJob.status == JobStatus.PROCESSING.value)
            .where(NotificationJob.claimed_at < to_naive_utc(claimed_before))
            .values(
                status=JobStatus.FAILED.value,
                attempt_count=NotificationJob.attempt_count + 1,
                last_error="claim expired",
                next_attempt_at=naive_now,
                updated_at=naive_now,
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount
