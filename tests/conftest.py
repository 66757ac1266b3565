"""Pytest configuration and fixtures for test suite."""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock
from uuid import UUID

import pytest
import pytz
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("EMAIL_PROVIDER", "null")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from config.settings import DigestSettings  # noqa: E402
from database.connection import make_session_factory, session_scope  # noqa: E402
from database.models import Base, Client, Firm, StaffUser, Task  # noqa: E402
from digest.renderer import DigestRenderer  # noqa: E402
from digest.timezones import to_naive_utc  # noqa: E402
from notifications.email_provider import EmailProvider  # noqa: E402
from tasks.delivery_worker import DeliveryWorker  # noqa: E402
from tasks.digest_scheduler import DigestScheduler  # noqa: E402


# 18:45 in Asia/Kolkata on 19 Oct 2026
NOW = datetime(2026, 10, 19, 13, 15, tzinfo=pytz.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def digest_settings():
    return DigestSettings(
        poll_interval_seconds=0,
        error_backoff_seconds=0,
        send_pacing_min_seconds=0,
        send_pacing_max_seconds=0,
    )


class DirectoryBuilder:
    """Seeds firms, staff, clients and tasks; every call commits."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, obj):
        with session_scope(self.session_factory) as session:
            session.add(obj)
            session.flush()
            return obj

    def firm(self, name: str = "Acme", timezone: Optional[str] = "Asia/Kolkata", is_active: bool = True) -> UUID:
        return self._add(Firm(name=name, timezone=timezone, is_active=is_active)).firm_id

    def user(
        self,
        firm_id: UUID,
        full_name: str = "Asha",
        email: Optional[str] = None,
        role: str = "staff",
        is_active: bool = True,
    ) -> UUID:
        email = email or f"{full_name.lower().replace(' ', '.')}@example.test"
        return self._add(
            StaffUser(firm_id=firm_id, full_name=full_name, email=email, role=role, is_active=is_active)
        ).user_id

    def client(self, firm_id: UUID, name: str) -> UUID:
        return self._add(Client(firm_id=firm_id, name=name)).client_id

    def task(
        self,
        firm_id: UUID,
        title: str,
        assigned_to: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
        client_id: Optional[UUID] = None,
        due_date: Optional[datetime] = None,
        status: str = "assigned",
    ) -> UUID:
        return self._add(
            Task(
                firm_id=firm_id,
                title=title,
                assigned_to=assigned_to,
                created_by=created_by,
                client_id=client_id,
                due_date=to_naive_utc(due_date) if due_date else None,
                status=status,
            )
        ).task_id


@pytest.fixture
def directory(session_factory):
    return DirectoryBuilder(session_factory)


@pytest.fixture
def directory_for():
    """Builder factory for tests that bring their own database."""
    return DirectoryBuilder


@pytest.fixture
def mock_provider():
    """Email provider double that accepts every message."""
    provider = MagicMock(spec=EmailProvider)
    provider.send_html.return_value = "msg-1"
    return provider


@pytest.fixture
def scheduler(session_factory, digest_settings):
    return DigestScheduler(session_factory, digest_settings)


@pytest.fixture
def worker(session_factory, mock_provider, digest_settings):
    return DeliveryWorker(
        session_factory=session_factory,
        email_provider=mock_provider,
        renderer=DigestRenderer(),
        settings=digest_settings,
    )
