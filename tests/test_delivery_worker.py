"""Tests for the delivery worker."""

import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from config.database import DatabaseSettings
from config.settings import DigestSettings
from database.connection import create_sync_engine, init_schema, make_session_factory, session_scope
from database.models import JobStatus, NotificationJob, StaffUser
from database.repositories import NotificationJobRepository
from digest.renderer import NO_OVERDUE, NO_REVIEW, DigestRenderer
from notifications.email_provider import NullEmailProvider
from notifications.errors import EmailDeliveryError
from resilience import RetryConfig
from tasks.delivery_worker import DeliveryWorker, JobOutcome


def _enqueue(session_factory, firm_id, user_id, now):
    with session_scope(session_factory) as session:
        NotificationJobRepository(session).enqueue(
            user_id=user_id,
            firm_id=firm_id,
            job_type="day_end_reminder",
            scheduled_date=now.date(),
            scheduled_for=now,
        )


def _job_for(session_factory, user_id) -> NotificationJob:
    with session_scope(session_factory) as session:
        return session.query(NotificationJob).filter(NotificationJob.user_id == user_id).one()


@pytest.fixture
def asha(directory, session_factory, now):
    """Acme staff member with a pending job."""
    firm_id = directory.firm("Acme", "Asia/Kolkata")
    user_id = directory.user(firm_id, "Asha", email="asha@acme.test")
    _enqueue(session_factory, firm_id, user_id, now)
    return firm_id, user_id


class TestEndToEnd:
    """Scheduler to worker flow."""

    def test_scheduled_job_is_delivered(self, scheduler, worker, directory, session_factory, mock_provider, now):
        """A freshly scheduled job is claimed, rendered empty, sent and marked sent."""
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        user_id = directory.user(firm_id, "Asha", email="asha@acme.test")
        scheduler.run_scheduling_pass(now)

        report = worker.run_worker_batch(now)

        assert report.fetched == 1
        assert report.sent == 1
        to, subject, html = mock_provider.send_html.call_args.args
        assert to == "asha@acme.test"
        assert subject == "Your daily task update"
        assert "Hello Asha," in html
        assert NO_OVERDUE in html
        assert NO_REVIEW in html

        job = _job_for(session_factory, user_id)
        assert job.status == JobStatus.SENT.value
        assert job.sent_at == now.replace(tzinfo=None)
        assert job.delivery_id == "msg-1"
        assert job.attempt_count == 0

    def test_sent_job_not_processed_again(self, worker, asha, mock_provider, now):
        worker.run_worker_batch(now)
        report = worker.run_worker_batch(now + timedelta(minutes=1))

        assert report.fetched == 0
        assert mock_provider.send_html.call_count == 1

    def test_digest_lists_assigned_tasks(self, worker, directory, asha, mock_provider, now):
        firm_id, user_id = asha
        client_id = directory.client(firm_id, "Mehta Traders")
        directory.task(firm_id, "GST return", assigned_to=user_id, client_id=client_id, due_date=now - timedelta(days=1))
        directory.task(firm_id, "Someone else's audit", due_date=now - timedelta(days=1))
        directory.task(firm_id, "Filed return", assigned_to=user_id, status="filed_completed", due_date=now)

        worker.run_worker_batch(now)

        html = mock_provider.send_html.call_args.args[2]
        assert "GST return" in html
        assert "Mehta Traders" in html
        assert "Overdue Tasks (1)" in html
        assert "Someone else" not in html
        assert "Filed return" not in html


class TestFailures:
    """Tests for failed deliveries and retries."""

    def test_provider_failure_marks_failed_and_retries_after_backoff(
        self, worker, asha, session_factory, mock_provider, now
    ):
        _, user_id = asha
        mock_provider.send_html.side_effect = EmailDeliveryError("SendGrid returned status 503", provider="sendgrid")

        report = worker.run_worker_batch(now)

        assert report.failed == 1
        job = _job_for(session_factory, user_id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempt_count == 1
        assert "EmailDeliveryError" in job.last_error
        assert job.next_attempt_at == (now + timedelta(seconds=300)).replace(tzinfo=None)

        # Not eligible before the backoff elapses
        assert worker.run_worker_batch(now + timedelta(minutes=1)).fetched == 0

        mock_provider.send_html.side_effect = None
        mock_provider.send_html.return_value = "msg-2"
        retry = worker.run_worker_batch(now + timedelta(minutes=5))

        assert retry.sent == 1
        job = _job_for(session_factory, user_id)
        assert job.status == JobStatus.SENT.value
        assert job.delivery_id == "msg-2"
        assert job.last_error is None

    def test_retry_ceiling(self, worker, asha, session_factory, mock_provider, now):
        _, user_id = asha
        mock_provider.send_html.side_effect = EmailDeliveryError("timeout")

        worker.run_worker_batch(now)
        worker.run_worker_batch(now + timedelta(seconds=300))
        # Second failure backs off 600s
        assert worker.run_worker_batch(now + timedelta(seconds=600)).fetched == 0
        worker.run_worker_batch(now + timedelta(seconds=900))

        job = _job_for(session_factory, user_id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempt_count == 3
        assert mock_provider.send_html.call_count == 3
        assert worker.run_worker_batch(now + timedelta(days=1)).fetched == 0

    def test_injected_retry_policy_sets_the_ceiling(self, session_factory, asha, mock_provider, digest_settings, now):
        """The claim and the exhaustion check share one attempt ceiling."""
        _, user_id = asha
        mock_provider.send_html.side_effect = EmailDeliveryError("timeout")
        worker = DeliveryWorker(
            session_factory,
            mock_provider,
            DigestRenderer(),
            digest_settings,
            retry_config=RetryConfig(max_attempts=1, base_delay=0),
        )

        with patch("tasks.delivery_worker.logger") as mock_logger:
            assert worker.run_worker_batch(now).failed == 1

        assert mock_logger.error.call_args.kwargs["extra"]["extra_data"]["exhausted"] is True
        assert _job_for(session_factory, user_id).attempt_count == 1
        assert worker.run_worker_batch(now + timedelta(days=1)).fetched == 0
        assert mock_provider.send_html.call_count == 1

    def test_missing_recipient_fails_permanently(self, worker, directory, session_factory, mock_provider, now):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        ghost_id = directory.user(firm_id, "Ghost")
        _enqueue(session_factory, firm_id, ghost_id, now)
        with session_scope(session_factory) as session:
            session.query(StaffUser).filter(StaffUser.user_id == ghost_id).delete()

        report = worker.run_worker_batch(now)

        assert report.failed == 1
        job = _job_for(session_factory, ghost_id)
        assert job.status == JobStatus.FAILED.value
        assert job.attempt_count == 3
        assert "RecipientNotFoundError" in job.last_error
        mock_provider.send_html.assert_not_called()

    def test_inactive_recipient_is_skipped(self, worker, directory, session_factory, mock_provider, now):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        user_id = directory.user(firm_id, "Left", is_active=False)
        _enqueue(session_factory, firm_id, user_id, now)

        report = worker.run_worker_batch(now)

        assert report.skipped == 1
        job = _job_for(session_factory, user_id)
        assert job.status == JobStatus.SKIPPED.value
        assert job.sent_at is None
        mock_provider.send_html.assert_not_called()

    def test_bookkeeping_error_does_not_abort_batch(self, worker, asha, now):
        with patch.object(NotificationJobRepository, "claim", side_effect=RuntimeError("disk I/O error")):
            report = worker.run_worker_batch(now)

        assert report.outcomes == {next(iter(report.outcomes)): JobOutcome.ERROR.value}
        assert "disk I/O error" in report.errors[0]

    def test_already_claimed_job_is_not_processed(self, worker, asha, session_factory, mock_provider, now):
        _, user_id = asha
        job_id = _job_for(session_factory, user_id).job_id
        with session_scope(session_factory) as session:
            NotificationJobRepository(session).claim(job_id, now, 3)

        report = worker.run_worker_batch(now)

        assert report.fetched == 0
        mock_provider.send_html.assert_not_called()


class TestManagerDigest:
    """Tests for the manager and partner digest."""

    def test_manager_gets_personal_and_firm_sections(self, worker, directory, session_factory, mock_provider, now):
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        manager_id = directory.user(firm_id, "Meera", role="manager")
        staff_id = directory.user(firm_id, "Ravi")
        directory.task(firm_id, "Manager filing", assigned_to=staff_id, created_by=manager_id,
                       due_date=now + timedelta(days=3))
        directory.task(firm_id, "Staff bookkeeping", assigned_to=staff_id, created_by=staff_id,
                       due_date=now + timedelta(days=3))
        _enqueue(session_factory, firm_id, manager_id, now)

        worker.run_worker_batch(now)

        html = mock_provider.send_html.call_args.args[2]
        assert "Your Tasks" in html
        assert "Full Firm Overview" in html
        assert html.count("Manager filing") == 2
        assert html.count("Staff bookkeeping") == 1

    def test_staff_gets_individual_digest(self, worker, asha, mock_provider, now):
        worker.run_worker_batch(now)

        html = mock_provider.send_html.call_args.args[2]
        assert "Full Firm Overview" not in html


class TestLoop:
    """Tests for batch control and the polling loop."""

    def test_batch_size_limits_fetch(self, session_factory, directory, mock_provider, now):
        settings = DigestSettings(batch_size=2)
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        for name in ("A", "B", "C"):
            _enqueue(session_factory, firm_id, directory.user(firm_id, name), now)
        worker = DeliveryWorker(session_factory, mock_provider, DigestRenderer(), settings)

        assert worker.run_worker_batch(now).fetched == 2
        assert worker.run_worker_batch(now).fetched == 1

    def test_drain_until_empty(self, session_factory, directory, mock_provider, now):
        settings = DigestSettings(batch_size=2)
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        for name in ("A", "B", "C"):
            _enqueue(session_factory, firm_id, directory.user(firm_id, name), now)
        worker = DeliveryWorker(session_factory, mock_provider, DigestRenderer(), settings)

        reports = worker.drain()

        assert [r.fetched for r in reports] == [2, 1, 0]
        assert sum(r.sent for r in reports) == 3

    def test_pacing_between_sends(self, session_factory, directory, mock_provider, now):
        settings = DigestSettings(send_pacing_min_seconds=1, send_pacing_max_seconds=1)
        firm_id = directory.firm("Acme", "Asia/Kolkata")
        for name in ("A", "B"):
            _enqueue(session_factory, firm_id, directory.user(firm_id, name), now)
        worker = DeliveryWorker(session_factory, mock_provider, DigestRenderer(), settings)

        with patch("tasks.delivery_worker.time.sleep") as mock_sleep:
            worker.run_worker_batch(now)

        mock_sleep.assert_called_once_with(1)

    def test_stop_event_stops_between_jobs(self, worker, asha, mock_provider, now):
        stop = threading.Event()
        stop.set()

        report = worker.run_worker_batch(now, stop_event=stop)

        assert report.fetched == 1
        assert report.outcomes == {}
        mock_provider.send_html.assert_not_called()

    def test_run_forever_returns_when_stopped(self, worker, mock_provider):
        stop = threading.Event()
        stop.set()

        worker.run_forever(stop)

        mock_provider.send_html.assert_not_called()

    def test_run_forever_survives_batch_error(self, worker):
        stop = threading.Event()

        def fail_once(*args, **kwargs):
            stop.set()
            raise RuntimeError("database unavailable")

        with patch.object(worker, "run_worker_batch", side_effect=fail_once) as mock_batch:
            worker.run_forever(stop)

        assert mock_batch.call_count == 1


class _CountingProvider(NullEmailProvider):
    """Records every delivery; safe to share between threads."""

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self.recipients = []

    def send_html(self, to, subject, html):
        with self._lock:
            self.recipients.append(to)
        return super().send_html(to, subject, html)


class TestConcurrentWorkers:
    """Several workers racing over one queue deliver each job exactly once."""

    def test_each_job_sent_once(self, tmp_path, directory_for, digest_settings, now):
        engine = create_sync_engine(DatabaseSettings(driver="sqlite", sqlite_path=tmp_path / "digest.db"))
        init_schema(engine)
        session_factory = make_session_factory(engine)
        directory = directory_for(session_factory)

        firm_id = directory.firm("Acme", "Asia/Kolkata")
        for i in range(20):
            _enqueue(session_factory, firm_id, directory.user(firm_id, f"Staff {i}"), now)

        provider = _CountingProvider()
        settings = digest_settings.model_copy(update={"batch_size": 20})
        barrier = threading.Barrier(8)
        reports = []

        def run():
            worker = DeliveryWorker(session_factory, provider, DigestRenderer(), settings)
            barrier.wait()
            reports.append(worker.run_worker_batch(now))

        threads = [threading.Thread(target=run) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        try:
            assert len(reports) == 8
            assert all(not report.errors for report in reports)
            assert len(provider.recipients) == 20
            assert len(set(provider.recipients)) == 20
            assert sum(report.sent for report in reports) == 20
            with session_scope(session_factory) as session:
                statuses = {job.status for job in session.query(NotificationJob).all()}
            assert statuses == {JobStatus.SENT.value}
        finally:
            engine.dispose()
