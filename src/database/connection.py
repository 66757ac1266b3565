"""
Database Connection Module

Provides sync session management for the scheduler, the delivery worker and
the operational CLI.

Usage:
    with get_db_session() as session:
        result = session.execute(query)

    # With an injected factory (scheduler, worker, tests)
    with session_scope(session_factory) as session:
        ...
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from config.database import DatabaseSettings, get_database_settings
from database.models import Base

logger = logging.getLogger(__name__)

# Global sync engine and session factory (lazy initialization)
_sync_engine = None
_sync_session_factory = None


def _setup_sqlite_pragmas(engine: Engine) -> None:
    """Enable foreign keys and WAL on every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


def create_sync_engine(settings: DatabaseSettings) -> Engine:
    """
    Build a SQLAlchemy engine for the given settings.

    Args:
        settings: Database settings.

    Returns:
        Engine: Synchronous SQLAlchemy engine.
    """
    logger.info(
        "Creating sync database engine",
        extra={
            "driver": settings.driver,
            "database": settings.name if settings.is_postgres else str(settings.sqlite_path),
        }
    )

    # Pool configuration differs for SQLite vs PostgreSQL
    if settings.is_sqlite:
        pool_class = NullPool
        pool_kwargs = {}
    else:
        pool_class = QueuePool
        pool_kwargs = {
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_recycle": settings.pool_recycle,
            "pool_pre_ping": settings.pool_pre_ping,
        }

    engine = create_engine(
        settings.sync_url,
        echo=settings.echo_sql,
        poolclass=pool_class,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )

    if settings.is_sqlite:
        _setup_sqlite_pragmas(engine)

    return engine


def get_sync_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """
    Get or create the process-wide synchronous engine.

    Args:
        settings: Database settings. If None, loads from environment.

    Returns:
        Engine: Synchronous SQLAlchemy engine.
    """
    global _sync_engine

    if _sync_engine is None:
        _sync_engine = create_sync_engine(settings or get_database_settings())

    return _sync_engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with the options every caller expects."""
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


def get_sync_session_factory(
    settings: Optional[DatabaseSettings] = None
) -> sessionmaker:
    """
    Get or create the sync session factory.

    Args:
        settings: Optional database settings.

    Returns:
        sessionmaker: Factory for creating sync sessions.
    """
    global _sync_session_factory

    if _sync_session_factory is None:
        _sync_session_factory = make_session_factory(get_sync_engine(settings))

    return _sync_session_factory


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Open a session from the given factory as a unit of work.

    Yields:
        Session: commits on success, rolls back on error, always closes.
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_db_session(
    settings: Optional[DatabaseSettings] = None
) -> Generator[Session, None, None]:
    """
    Get a synchronous database session from the global factory.

    Args:
        settings: Optional database settings.

    Yields:
        Session: SQLAlchemy session that auto-commits on success, rollbacks on error.
    """
    with session_scope(get_sync_session_factory(settings)) as session:
        yield session


def init_schema(engine: Optional[Engine] = None) -> None:
    """
    Create all tables that do not exist yet.

    Intended for development and tests; production schema is managed by
    migrations.
    """
    engine = engine or get_sync_engine()
    Base.metadata.create_all(engine)
    logger.info("Database schema initialized")


def close_sync_engine() -> None:
    """
    Close the sync database engine and cleanup connections.

    Should be called during application shutdown.
    """
    global _sync_engine, _sync_session_factory

    if _sync_engine is not None:
        logger.info("Closing sync database engine")
        _sync_engine.dispose()
        _sync_engine = None
        _sync_session_factory = None
