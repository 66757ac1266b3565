"""
Database Layer for the practice digest service.

This module provides:
- SQLAlchemy ORM models for the firm directory, tasks and the job queue
- Sync engine and session management
- Repositories (see database.repositories)
"""

from .models import (
    Base,
    Firm,
    StaffUser,
    Client,
    Task,
    NotificationJob,
    JobStatus,
    TaskStatus,
    UserRole,
)

from .connection import (
    create_sync_engine,
    get_sync_engine,
    get_sync_session_factory,
    make_session_factory,
    session_scope,
    get_db_session,
    init_schema,
    close_sync_engine,
)

__all__ = [
    # Models
    "Base",
    "Firm",
    "StaffUser",
    "Client",
    "Task",
    "NotificationJob",
    "JobStatus",
    "TaskStatus",
    "UserRole",
    # Connection
    "create_sync_engine",
    "get_sync_engine",
    "get_sync_session_factory",
    "make_session_factory",
    "session_scope",
    "get_db_session",
    "init_schema",
    "close_sync_engine",
]
