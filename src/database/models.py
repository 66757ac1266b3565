"""
SQLAlchemy ORM Models for the practice digest database.

Architecture:
- Primary Keys: UUID for all tables (globally unique)
- Directory tables (firms, users, clients, tasks) are read-only inputs owned
  by the practice management application
- notification_jobs is the durable job queue written by the scheduler and
  the delivery worker
- Timestamps: naive UTC
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Boolean, Date, DateTime, Text, Uuid,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


# =============================================================================
# ENUMERATIONS
# =============================================================================

class UserRole(str, PyEnum):
    """Staff roles within a firm."""
    STAFF = "staff"
    MANAGER = "manager"
    PARTNER = "partner"


class TaskStatus(str, PyEnum):
    """Workflow status of a client task."""
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    AWAITING_CLIENT_DATA = "awaiting_client_data"
    READY_FOR_REVIEW = "ready_for_review"
    FILED_COMPLETED = "filed_completed"


class JobStatus(str, PyEnum):
    """Notification job lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


def _in_clause(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# =============================================================================
# DIRECTORY
# =============================================================================

class Firm(Base):
    """
    Firm (accounting practice).

    timezone is an IANA identifier; a missing or unknown zone falls back to
    the configured default when scheduling.
    """
    __tablename__ = "firms"

    firm_id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False, index=True)
    timezone = Column(String(64), nullable=True, comment="IANA time zone, e.g. Asia/Kolkata")
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    users = relationship("StaffUser", back_populates="firm")

    def __repr__(self):
        return f"<Firm(id={self.firm_id}, name={self.name}, tz={self.timezone})>"


class StaffUser(Base):
    """A firm member who can receive digests."""
    __tablename__ = "users"

    user_id = Column(Uuid, primary_key=True, default=uuid4)
    firm_id = Column(
        Uuid,
        ForeignKey("firms.firm_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(String(20), nullable=False, default=UserRole.STAFF.value, comment="staff, manager, partner")
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    firm = relationship("Firm", back_populates="users")

    __table_args__ = (
        Index("ix_users_firm_active", "firm_id", "is_active"),
        CheckConstraint(f"role IN ({_in_clause(UserRole)})", name="ck_users_role"),
    )

    def __repr__(self):
        return f"<StaffUser(id={self.user_id}, email={self.email}, role={self.role})>"

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class Client(Base):
    """Firm client; supplies the client name shown on task rows."""
    __tablename__ = "clients"

    client_id = Column(Uuid, primary_key=True, default=uuid4)
    firm_id = Column(
        Uuid,
        ForeignKey("firms.firm_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False)

    def __repr__(self):
        return f"<Client(id={self.client_id}, name={self.name})>"


class Task(Base):
    """Unit of client work assigned to a staff member."""
    __tablename__ = "tasks"

    task_id = Column(Uuid, primary_key=True, default=uuid4)
    firm_id = Column(
        Uuid,
        ForeignKey("firms.firm_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    assigned_to = Column(Uuid, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Uuid, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True)
    client_id = Column(Uuid, ForeignKey("clients.client_id", ondelete="SET NULL"), nullable=True)

    title = Column(String(500), nullable=False)
    due_date = Column(DateTime, nullable=True, comment="Naive UTC")
    status = Column(String(30), nullable=False, default=TaskStatus.ASSIGNED.value, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    client = relationship("Client")
    assignee = relationship("StaffUser", foreign_keys=[assigned_to])

    __table_args__ = (
        Index("ix_tasks_firm_status", "firm_id", "status"),
        CheckConstraint(f"status IN ({_in_clause(TaskStatus)})", name="ck_tasks_status"),
    )

    def __repr__(self):
        return f"<Task(id={self.task_id}, title={self.title}, status={self.status})>"


# =============================================================================
# JOB QUEUE
# =============================================================================

class NotificationJob(Base):
    """
    Durable notification job.

    Primary Key: job_id (UUID)
    Natural Key: (user_id, job_type, scheduled_date), unique

    scheduled_date is the recipient firm's local calendar date at creation
    time. Rows are never deleted by the digest pipeline.
    """
    __tablename__ = "notification_jobs"

    job_id = Column(Uuid, primary_key=True, default=uuid4)

    user_id = Column(
        Uuid,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    firm_id = Column(
        Uuid,
        ForeignKey("firms.firm_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    job_type = Column(String(50), nullable=False, comment="e.g. day_end_reminder")

    scheduled_for = Column(DateTime, nullable=False, comment="Instant the job was created")
    scheduled_date = Column(Date, nullable=False, comment="Firm-local calendar date")

    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True, comment="Truncated diagnostic of the last failure")

    claimed_at = Column(DateTime, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True, comment="Earliest retry instant for failed jobs")
    sent_at = Column(DateTime, nullable=True)
    delivery_id = Column(String(255), nullable=True, comment="Provider message id")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "job_type", "scheduled_date", name="uq_notification_job_recipient_day"),
        Index("ix_notification_jobs_status_scheduled", "status", "scheduled_for"),
        Index("ix_notification_jobs_firm_date", "firm_id", "scheduled_date"),
        CheckConstraint(f"status IN ({_in_clause(JobStatus)})", name="ck_notification_jobs_status"),
        CheckConstraint("attempt_count >= 0", name="ck_notification_jobs_attempts"),
    )

    def __repr__(self):
        return (
            f"<NotificationJob(id={self.job_id}, user={self.user_id}, "
            f"date={self.scheduled_date}, status={self.status})>"
        )

    def to_dict(self) -> dict:
        return {
            "job_id": str(self.job_id),
            "user_id": str(self.user_id),
            "firm_id": str(self.firm_id),
            "job_type": self.job_type,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "status": self.status,
            "attempt_count": self.attempt_count,
            "last_error": self.last_error,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "delivery_id": self.delivery_id,
        }
