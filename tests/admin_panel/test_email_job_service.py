"""Tests for the email job admin service."""

from datetime import date, timedelta

import pytest

from admin_panel.services import EmailJobService
from database.connection import session_scope
from database.models import NotificationJob
from database.repositories import NotificationJobRepository

LOCAL_DATE = date(2026, 10, 19)


def _enqueue(session_factory, firm_id, user_id, now):
    with session_scope(session_factory) as session:
        NotificationJobRepository(session).enqueue(
            user_id=user_id,
            firm_id=firm_id,
            job_type="day_end_reminder",
            scheduled_date=LOCAL_DATE,
            scheduled_for=now,
        )
        return session.query(NotificationJob).filter(NotificationJob.user_id == user_id).one().job_id


def _fail(session_factory, job_id, now, floor=None):
    with session_scope(session_factory) as session:
        jobs = NotificationJobRepository(session)
        jobs.claim(job_id, now, 3)
        jobs.mark_failed(job_id, now, "TransientJobError: provider down", attempt_floor=floor)


@pytest.fixture
def service(session_factory, digest_settings):
    return EmailJobService(session_factory, digest_settings)


@pytest.fixture
def acme(directory):
    firm_id = directory.firm("Acme", "Asia/Kolkata")
    return firm_id, directory.user(firm_id, "Asha", email="asha@acme.test")


class TestStatus:
    """Tests for status queries."""

    def test_get_email_status(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        _enqueue(session_factory, firm_id, user_id, now)

        rows = service.get_email_status(str(firm_id), LOCAL_DATE)

        assert len(rows) == 1
        assert rows[0]["user_id"] == str(user_id)
        assert rows[0]["status"] == "pending"
        assert rows[0]["recipient_name"] == "Asha"
        assert rows[0]["recipient_email"] == "asha@acme.test"

    def test_get_email_status_other_date_is_empty(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        _enqueue(session_factory, firm_id, user_id, now)

        assert service.get_email_status(firm_id, LOCAL_DATE + timedelta(days=1)) == []

    def test_latest_job_for_user(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        job_id = _enqueue(session_factory, firm_id, user_id, now)

        found = service.get_latest_job_for_user("ASHA@acme.test")

        assert found["user"]["user_id"] == str(user_id)
        assert found["user"]["full_name"] == "Asha"
        assert found["job"]["job_id"] == str(job_id)

    def test_latest_job_for_user_without_jobs(self, service, acme):
        found = service.get_latest_job_for_user("asha@acme.test")
        assert found["job"] is None

    def test_latest_job_for_unknown_email(self, service, acme):
        assert service.get_latest_job_for_user("nobody@acme.test") is None

    def test_status_counts(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        job_id = _enqueue(session_factory, firm_id, user_id, now)
        _fail(session_factory, job_id, now)

        counts = service.status_counts(firm_id=firm_id)

        assert counts["failed"] == 1
        assert counts["pending"] == 0

    def test_list_exhausted_jobs(self, service, session_factory, directory, acme, now):
        firm_id, user_id = acme
        retrying = _enqueue(session_factory, firm_id, user_id, now)
        _fail(session_factory, retrying, now)
        exhausted = _enqueue(session_factory, firm_id, directory.user(firm_id, "Bharat"), now)
        _fail(session_factory, exhausted, now, floor=3)

        rows = service.list_exhausted_jobs()

        assert [row["job_id"] for row in rows] == [str(exhausted)]


class TestRepair:
    """Tests for queue repair operations."""

    def test_requeue_jobs(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        job_id = _enqueue(session_factory, firm_id, user_id, now)
        _fail(session_factory, job_id, now, floor=3)

        assert service.requeue_jobs([str(job_id)], now=now) == 1

        job = service.get_latest_job_for_user("asha@acme.test")["job"]
        assert job["status"] == "pending"
        assert job["attempt_count"] == 0
        assert job["last_error"] is None

    def test_requeue_failed_scoped_to_date(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        job_id = _enqueue(session_factory, firm_id, user_id, now)
        _fail(session_factory, job_id, now, floor=3)

        assert service.requeue_failed(firm_id=firm_id, scheduled_date=LOCAL_DATE + timedelta(days=1), now=now) == 0
        assert service.requeue_failed(firm_id=firm_id, scheduled_date=LOCAL_DATE, now=now) == 1

    def test_release_stale_claims(self, service, session_factory, acme, now):
        firm_id, user_id = acme
        job_id = _enqueue(session_factory, firm_id, user_id, now)
        with session_scope(session_factory) as session:
            NotificationJobRepository(session).claim(job_id, now, 3)

        assert service.release_stale_claims(now=now + timedelta(minutes=10)) == 0
        assert service.release_stale_claims(now=now + timedelta(minutes=31)) == 1

        job = service.get_latest_job_for_user("asha@acme.test")["job"]
        assert job["status"] == "failed"
        assert job["last_error"] == "claim expired"
        assert job["attempt_count"] == 1
