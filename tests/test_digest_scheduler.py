"""Tests for the day-end job scheduler."""

from datetime import date, datetime, time
from unittest.mock import patch

import pytest
import pytz

from config.settings import DigestSettings
from database.connection import session_scope
from database.models import NotificationJob
from database.repositories import NotificationJobRepository
from tasks.digest_scheduler import DigestScheduler


def _utc(hour, minute, day=19):
    return datetime(2026, 10, day, hour, minute, tzinfo=pytz.utc)


def _jobs(session_factory):
    with session_scope(session_factory) as session:
        return session.query(NotificationJob).order_by(NotificationJob.created_at).all()


class TestWindow:
    """Tests for the firm-local delivery window."""

    @pytest.mark.parametrize(
        "utc_time,expected",
        [
            (_utc(12, 59), False),  # 18:29 IST
            (_utc(13, 0), True),    # 18:30 IST
            (_utc(13, 15), True),   # 18:45 IST
            (_utc(13, 30), True),   # 19:00 IST
            (_utc(13, 31), False),  # 19:01 IST
        ],
    )
    def test_jobs_created_iff_local_time_in_window(self, scheduler, directory, session_factory, utc_time, expected):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        directory.user(firm_id, "Asha")

        report = scheduler.run_scheduling_pass(utc_time)

        assert report.firms[0].in_window is expected
        assert report.jobs_created == (1 if expected else 0)
        assert len(_jobs(session_factory)) == (1 if expected else 0)

    def test_in_window_ignores_seconds(self, scheduler):
        tz = pytz.timezone("Asia/Kolkata")
        assert scheduler.in_window(tz.localize(datetime(2026, 10, 19, 19, 0, 59)))

    def test_custom_window(self, session_factory, directory):
        settings = DigestSettings(window_start=time(17, 0), window_end=time(17, 30))
        firm_id = directory.firm("Acme", "UTC")
        directory.user(firm_id, "Asha")

        report = DigestScheduler(session_factory, settings).run_scheduling_pass(_utc(17, 10))

        assert report.jobs_created == 1


class TestScheduling:
    """Tests for job creation across firms and passes."""

    def test_e2e_job_for_acme(self, scheduler, directory, session_factory, now):
        """Acme at 18:45 local gets one pending job dated with the local date."""
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        user_id = directory.user(firm_id, "Asha")

        report = scheduler.run_scheduling_pass(now)

        jobs = _jobs(session_factory)
        assert len(jobs) == 1
        assert jobs[0].user_id == user_id
        assert jobs[0].firm_id == firm_id
        assert jobs[0].status == "pending"
        assert jobs[0].job_type == "day_end_reminder"
        assert jobs[0].scheduled_date == date(2026, 10, 19)
        assert report.firms[0].local_time == "18:45"
        assert report.firms[0].local_date == "2026-10-19"

    def test_repeated_passes_are_idempotent(self, scheduler, directory, session_factory):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        directory.user(firm_id, "Asha")

        first = scheduler.run_scheduling_pass(_utc(13, 0))
        second = scheduler.run_scheduling_pass(_utc(13, 15))
        third = scheduler.run_scheduling_pass(_utc(13, 30))

        assert first.jobs_created == 1
        assert second.jobs_created == 0
        assert second.jobs_existing == 1
        assert third.jobs_existing == 1
        assert len(_jobs(session_factory)) == 1

    def test_next_local_day_creates_new_job(self, scheduler, directory, session_factory):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        directory.user(firm_id, "Asha")

        scheduler.run_scheduling_pass(_utc(13, 0))
        scheduler.run_scheduling_pass(_utc(13, 0, day=20))

        assert [job.scheduled_date for job in _jobs(session_factory)] == [date(2026, 10, 19), date(2026, 10, 20)]

    def test_firms_evaluated_in_their_own_zone(self, scheduler, directory):
        directory.firm("Acme", "Asia/Kolkata")
        directory.firm("Hudson", "America/New_York")

        # 22:45 UTC is 18:45 EDT and 04:15 IST the next day
        report = scheduler.run_scheduling_pass(_utc(22, 45))

        by_name = {f.firm_name: f for f in report.firms}
        assert by_name["Hudson"].in_window is True
        assert by_name["Hudson"].local_date == "2026-10-19"
        assert by_name["Acme"].in_window is False

    def test_only_active_recipients(self, scheduler, directory, session_factory, now):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        active = directory.user(firm_id, "Asha")
        directory.user(firm_id, "Former", is_active=False)

        scheduler.run_scheduling_pass(now)

        assert [job.user_id for job in _jobs(session_factory)] == [active]

    def test_inactive_firm_ignored(self, scheduler, directory, now):
        firm_id = directory.firm("Closed", "Asia/Kolkata", is_active=False)
        directory.user(firm_id, "Asha")

        report = scheduler.run_scheduling_pass(now)

        assert report.firms == []
        assert report.jobs_created == 0

    def test_firm_without_recipients(self, scheduler, directory, now):
        directory.firm("Empty", "Asia/Kolkata")

        report = scheduler.run_scheduling_pass(now)

        assert report.firms[0].in_window is True
        assert report.jobs_created == 0
        assert report.to_dict()["errors"] == []


class TestTimezoneFallback:
    """Tests for firms with missing or invalid zones."""

    def test_missing_timezone_uses_default(self, scheduler, directory, now):
        firm_id = directory.firm("Acme", None)
        directory.user(firm_id, "Asha")

        report = scheduler.run_scheduling_pass(now)

        assert report.firms[0].timezone == "Asia/Kolkata"
        assert report.jobs_created == 1

    def test_invalid_timezone_uses_default(self, scheduler, directory, now, caplog):
        firm_id = directory.firm("Acme", "Mars/Olympus_Mons")
        directory.user(firm_id, "Asha")

        with caplog.at_level("WARNING"):
            report = scheduler.run_scheduling_pass(now)

        assert report.firms[0].timezone == "Asia/Kolkata"
        assert report.jobs_created == 1
        assert "invalid time zone" in caplog.text


class TestErrorIsolation:
    """Tests that one failure does not stop sibling work."""

    def test_failed_insert_does_not_block_other_recipients(self, scheduler, directory, now):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        directory.user(firm_id, "Asha")
        directory.user(firm_id, "Bharat")

        with patch.object(
            NotificationJobRepository,
            "enqueue",
            side_effect=[RuntimeError("database is locked"), True],
        ):
            report = scheduler.run_scheduling_pass(now)

        assert report.jobs_created == 1
        assert len(report.firms[0].errors) == 1
        assert "database is locked" in report.firms[0].errors[0]

    def test_firm_load_failure_is_reported(self, scheduler, now):
        with patch(
            "tasks.digest_scheduler.DirectoryRepository.list_active_firms",
            side_effect=RuntimeError("connection refused"),
        ):
            report = scheduler.run_scheduling_pass(now)

        assert report.firms == []
        assert "connection refused" in report.errors[0]

    def test_unexpected_firm_error_does_not_block_other_firms(self, scheduler, directory, session_factory, now):
        from digest.timezones import resolve_timezone

        broken_id = directory.firm("Broken", "Asia/Calcutta")
        directory.user(broken_id, "Asha")
        healthy_id = directory.firm("Acme", "Asia/Kolkata")
        directory.user(healthy_id, "Bharat")

        def flaky_resolve(name, default):
            if name == "Asia/Calcutta":
                raise RuntimeError("zone lookup exploded")
            return resolve_timezone(name, default)

        with patch("tasks.digest_scheduler.resolve_timezone", side_effect=flaky_resolve):
            report = scheduler.run_scheduling_pass(now)

        assert report.jobs_created == 1
        assert [firm.firm_name for firm in report.firms] == ["Acme"]
        assert any("zone lookup exploded" in error for error in report.errors)
        with session_scope(session_factory) as session:
            jobs = session.query(NotificationJob).all()
            assert [job.firm_id for job in jobs] == [healthy_id]
