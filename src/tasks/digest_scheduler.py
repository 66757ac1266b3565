"""
Digest Scheduler - creates day-end notification jobs.

Runs on a fixed interval (every 15 minutes by default). For each active
firm it converts ``now`` to the firm's local time and, when the local
time-of-day falls inside the delivery window, enqueues one pending job per
active staff member keyed by (recipient, job type, local date).

Repeated passes are safe: the unique key turns duplicates into no-ops.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from config.settings import DigestSettings
from database.connection import session_scope
from database.repositories import DirectoryRepository, NotificationJobRepository
from digest.timezones import ensure_aware_utc, resolve_timezone, utcnow
from services.logging_config import get_logger, job_context

logger = get_logger(__name__, component="scheduler")


@dataclass
class FirmSchedulingResult:
    """Outcome of one firm's sub-pass."""
    firm_id: str
    firm_name: str
    timezone: str
    local_time: str
    local_date: str
    in_window: bool
    jobs_created: int = 0
    jobs_existing: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firm_id": self.firm_id,
            "firm_name": self.firm_name,
            "timezone": self.timezone,
            "local_time": self.local_time,
            "local_date": self.local_date,
            "in_window": self.in_window,
            "jobs_created": self.jobs_created,
            "jobs_existing": self.jobs_existing,
            "errors": list(self.errors),
        }


@dataclass
class SchedulingReport:
    """Summary of a full scheduling pass."""
    started_at: datetime
    firms: List[FirmSchedulingResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def jobs_created(self) -> int:
        return sum(f.jobs_created for f in self.firms)

    @property
    def jobs_existing(self) -> int:
        return sum(f.jobs_existing for f in self.firms)

    @property
    def firms_in_window(self) -> int:
        return sum(1 for f in self.firms if f.in_window)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "firms_checked": len(self.firms),
            "firms_in_window": self.firms_in_window,
            "jobs_created": self.jobs_created,
            "jobs_existing": self.jobs_existing,
            "errors": list(self.errors) + [e for f in self.firms for e in f.errors],
            "firms": [f.to_dict() for f in self.firms],
        }


class DigestScheduler:
    """
    Materializes day-end digest jobs for firms inside their local window.

    Args:
        session_factory: SQLAlchemy sessionmaker; each firm gets its own session
        settings: Digest settings (window, default zone, job type)
    """

    def __init__(self, session_factory: sessionmaker, settings: DigestSettings):
        self.session_factory = session_factory
        self.settings = settings

    def in_window(self, local_now: datetime) -> bool:
        """Inclusive window check at minute resolution."""
        hhmm = local_now.strftime("%H:%M")
        return (
            self.settings.window_start.strftime("%H:%M")
            <= hhmm
            <= self.settings.window_end.strftime("%H:%M")
        )

    def run_scheduling_pass(self, now: Optional[datetime] = None) -> SchedulingReport:
        """
        Run one scheduling pass.

        Args:
            now: Current instant (defaults to the wall clock)

        Returns:
            SchedulingReport with per-firm outcomes
        """
        now = ensure_aware_utc(now) if now else utcnow()
        report = SchedulingReport(started_at=now)

        try:
            with session_scope(self.session_factory) as session:
                firms = [
                    (firm.firm_id, firm.name, firm.timezone)
                    for firm in DirectoryRepository(session).list_active_firms()
                ]
        except Exception as e:
            logger.exception(f"Failed to load active firms: {e}")
            report.errors.append(f"load_firms: {type(e).__name__}: {e}")
            return report

        for firm_id, firm_name, tz_name in firms:
            try:
                report.firms.append(self._schedule_firm(firm_id, firm_name, tz_name, now))
            except Exception as e:
                logger.exception(
                    f"Scheduling failed for firm {firm_name}: {e}",
                    extra={"extra_data": {"firm_id": str(firm_id)}},
                )
                report.errors.append(f"firm {firm_id}: {type(e).__name__}: {e}")

        logger.info(
            f"Scheduling pass complete: {report.jobs_created} created, "
            f"{report.jobs_existing} existing, {report.firms_in_window}/{len(report.firms)} firms in window",
            extra={"extra_data": {"jobs_created": report.jobs_created}},
        )
        return report

    def _schedule_firm(self, firm_id, firm_name: str, tz_name: Optional[str], now: datetime) -> FirmSchedulingResult:
        tz, valid = resolve_timezone(tz_name, self.settings.default_timezone)
        if not valid:
            logger.warning(
                f"Firm {firm_name} has invalid time zone {tz_name!r}, "
                f"using {self.settings.default_timezone}",
                extra={"extra_data": {"firm_id": str(firm_id)}},
            )

        local_now = now.astimezone(tz)
        result = FirmSchedulingResult(
            firm_id=str(firm_id),
            firm_name=firm_name,
            timezone=tz.zone,
            local_time=local_now.strftime("%H:%M"),
            local_date=local_now.date().isoformat(),
            in_window=self.in_window(local_now),
        )

        if not result.in_window:
            logger.debug(
                f"Firm {firm_name} outside window at {result.local_time} ({tz.zone}). Skipping.",
                extra={"extra_data": {"firm_id": str(firm_id)}},
            )
            return result

        with job_context(firm_id=firm_id):
            try:
                with session_scope(self.session_factory) as session:
                    recipient_ids = [
                        user.user_id
                        for user in DirectoryRepository(session).list_active_recipients(firm_id)
                    ]
            except Exception as e:
                logger.exception(f"Failed to load recipients for firm {firm_name}: {e}")
                result.errors.append(f"load_recipients: {type(e).__name__}: {e}")
                return result

            for user_id in recipient_ids:
                self._enqueue_for_recipient(result, firm_id, user_id, local_now, now)

        return result

    def _enqueue_for_recipient(self, result: FirmSchedulingResult, firm_id, user_id, local_now, now) -> None:
        # One transaction per recipient: a failed insert never discards a sibling's job
        try:
            with session_scope(self.session_factory) as session:
                created = NotificationJobRepository(session).enqueue(
                    user_id=user_id,
                    firm_id=firm_id,
                    job_type=self.settings.job_type,
                    scheduled_date=local_now.date(),
                    scheduled_for=now,
                )
        except Exception as e:
            logger.error(
                f"Failed to create job for user {user_id}: {e}",
                extra={"extra_data": {"recipient_id": str(user_id)}},
            )
            result.errors.append(f"{user_id}: {type(e).__name__}: {e}")
            return

        if created:
            result.jobs_created += 1
            logger.info(
                f"EMAIL_JOB_CREATED user={user_id} firm={result.firm_name} date={result.local_date}",
                extra={"extra_data": {"recipient_id": str(user_id)}},
            )
        else:
            result.jobs_existing += 1
