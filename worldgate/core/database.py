"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for the SQL plan/usage store
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, BigInteger, String, DateTime, Index, ForeignKey
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool
from sqlalchemy.sql import func
import os

from worldgate.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return settings.DATABASE_URL


def build_engine(url: str):
    """Create an engine; SQLite gets the driver's default pool."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


@contextmanager
def get_db_session(session_factory):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session(SessionLocal) as session:
            session.execute(...)
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


def create_all_tables(engine):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def drop_all_tables(engine):
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine)


# One row per user: plan assignment, subscription and scalar usage counters
user_plan_states = Table(
    'user_plan_states',
    metadata,
    Column('user_id', String(128), primary_key=True),
    Column('plan', String(32), nullable=False, server_default='basic'),
    Column('subscription_id', String(255), nullable=True),
    Column('subscription_status', String(32), nullable=False, server_default='active'),
    Column('world_element_count', Integer, nullable=False, server_default='0'),
    Column('monthly_requests', Integer, nullable=False, server_default='0'),
    Column('daily_requests', Integer, nullable=False, server_default='0'),
    Column('tokens_used', BigInteger, nullable=False, server_default='0'),
    Column('storage_used', BigInteger, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Recent AI usage log, trimmed to the retention cap per user
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(128), ForeignKey('user_plan_states.user_id', ondelete='CASCADE'), nullable=False),
    Column('operation', String(16), nullable=False),
    Column('model_name', String(128), nullable=False),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
    Column('token_count', BigInteger, nullable=False, server_default='0'),
    Index('idx_usage_events_user_occurred', 'user_id', 'occurred_at'),
)
