"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (StaticPool for SQLite)
- Table definitions for users, matching, streaks, nudges and reveals

Live-data queries must filter on `deleted_at IS NULL`; soft-deleted rows stay
in place as tombstones.
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Date,
    Boolean,
    Float,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from unora.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the current engine and forget the session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def _live_pending():
    return text("status = 'pending' AND deleted_at IS NULL")


def _live_active():
    return text("status = 'active' AND deleted_at IS NULL")


# Users (profile/credits collaborator data, read-mostly here)
users = Table(
    'users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('first_name', Text, nullable=True),
    Column('city', Text, nullable=True),
    Column('birth_date', Date, nullable=True),
    Column('photo_url', Text, nullable=True),
    Column('subscription_tier', String(20), nullable=False, server_default='free'),
    Column('credit_balance', Integer, nullable=False, server_default='0'),
    Column('active_connection_count', Integer, nullable=False, server_default='0'),
    Column('free_recoveries_used', Integer, nullable=False, server_default='0'),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    CheckConstraint('credit_balance >= 0', name='ck_users_credit_balance_non_negative'),
    CheckConstraint('active_connection_count >= 0', name='ck_users_active_connections_non_negative'),
    Index('idx_users_created_at', 'created_at'),
)

# Credit ledger (append-only)
credit_transactions = Table(
    'credit_transactions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False),
    Column('transaction_type', String(50), nullable=False),
    Column('credit_amount', Integer, nullable=False),  # signed
    Column('balance_after', Integer, nullable=False),
    Column('reference_type', String(50), nullable=True),
    Column('reference_id', String(100), nullable=True),
    Column('description', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_credit_transactions_user_created', 'user_id', 'created_at'),
)

# Discovery cards dealt to a viewer
discovery_cards = Table(
    'discovery_cards',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('owner_user_id', String(100), nullable=True),
    Column('candidate_user_id', String(100), nullable=False),
    Column('server_type', String(20), nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    Index('idx_discovery_cards_owner', 'owner_user_id', 'created_at'),
)

# Interests (one-directional)
interests = Table(
    'interests',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('sender_user_id', String(100), nullable=False),
    Column('receiver_user_id', String(100), nullable=False),
    Column('server_type', String(20), nullable=False),
    Column('discovery_card_id', String(36), nullable=True),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('matched_at', DateTime(timezone=True), nullable=True),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    CheckConstraint('sender_user_id <> receiver_user_id', name='ck_interests_not_self'),
    # At most one live pending interest per direction and server
    Index(
        'uq_interests_pending_pair',
        'sender_user_id',
        'receiver_user_id',
        'server_type',
        unique=True,
        postgresql_where=_live_pending(),
        sqlite_where=_live_pending(),
    ),
    Index('idx_interests_sender_created', 'sender_user_id', 'created_at'),
    Index('idx_interests_receiver_status', 'receiver_user_id', 'status'),
)

# Connections (canonical ordering user_a_id < user_b_id)
connections = Table(
    'connections',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_a_id', String(100), nullable=False),
    Column('user_b_id', String(100), nullable=False),
    Column('server_type', String(20), nullable=False),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('terminated_at', DateTime(timezone=True), nullable=True),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    CheckConstraint('user_a_id < user_b_id', name='ck_connections_canonical_order'),
    Index(
        'uq_connections_active_pair',
        'user_a_id',
        'user_b_id',
        'server_type',
        unique=True,
        postgresql_where=_live_active(),
        sqlite_where=_live_active(),
    ),
    Index('idx_connections_user_a', 'user_a_id', 'status'),
    Index('idx_connections_user_b', 'user_b_id', 'status'),
)

# Streaks (one per connection)
streaks = Table(
    'streaks',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('connection_id', String(36), nullable=False, unique=True),
    Column('state', String(20), nullable=False, server_default='active'),
    Column('current_day', Integer, nullable=False, server_default='1'),
    Column('reset_count', Integer, nullable=False, server_default='0'),
    Column('breaker_user_id', String(100), nullable=True),
    Column('recovery_deadline_at', DateTime(timezone=True), nullable=True),
    Column('recovery_payment_id', String(36), nullable=True),
    Column('health_score', Float, nullable=True),
    Column('last_missed_day', Date, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    CheckConstraint('current_day >= 1 AND current_day <= 15', name='ck_streaks_day_range'),
    Index('idx_streaks_state', 'state'),
)

# Check-ins (append-only)
check_ins = Table(
    'check_ins',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('streak_id', String(36), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('day_number', Integer, nullable=False),
    Column('check_in_date', Date, nullable=False),  # UTC calendar day
    Column('check_in_type', String(20), nullable=False, server_default='manual'),
    Column('event_data', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('streak_id', 'user_id', 'check_in_date', name='uq_check_ins_streak_user_date'),
    Index('idx_check_ins_streak_day', 'streak_id', 'day_number'),
)

# Nudges
nudges = Table(
    'nudges',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('streak_id', String(36), nullable=False),
    Column('sender_user_id', String(100), nullable=False),
    Column('receiver_user_id', String(100), nullable=False),
    Column('day_number', Integer, nullable=False),
    Column('nudge_date', Date, nullable=False),
    Column('status', String(20), nullable=False, server_default='sent'),
    Column('message', String(200), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('seen_at', DateTime(timezone=True), nullable=True),
    Column('responded_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('streak_id', 'sender_user_id', 'day_number', 'nudge_date', name='uq_nudges_streak_sender_day'),
    Index('idx_nudges_receiver_created', 'receiver_user_id', 'created_at'),
    Index('idx_nudges_sender_date', 'sender_user_id', 'nudge_date'),
)

# Reveal milestones (master data)
reveal_milestones = Table(
    'reveal_milestones',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('reveal_number', Integer, nullable=False, unique=True),
    Column('day_required', Integer, nullable=False),
    Column('reveal_type', String(20), nullable=False),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('icon_name', String(50), nullable=True),
    Column('credit_cost', Integer, nullable=False),
    Column('is_active', Boolean, nullable=False, server_default=text('true')),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Reveals (one per connection and milestone)
reveals = Table(
    'reveals',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('connection_id', String(36), nullable=False),
    Column('milestone_id', String(36), nullable=False),
    Column('unlock_method', String(20), nullable=True),
    Column('status', String(20), nullable=False, server_default='locked'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('unlocked_at', DateTime(timezone=True), nullable=True),
    Column('viewed_at', DateTime(timezone=True), nullable=True),
    # Content population retry bookkeeping
    Column('content_attempts', Integer, nullable=False, server_default='0'),
    Column('content_next_attempt_at', DateTime(timezone=True), nullable=True),
    Column('content_last_error', Text, nullable=True),
    UniqueConstraint('connection_id', 'milestone_id', name='uq_reveals_connection_milestone'),
    Index('idx_reveals_content_retry', 'content_next_attempt_at'),
)

# Generated reveal content
reveal_contents = Table(
    'reveal_contents',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('reveal_id', String(36), nullable=False, unique=True),
    Column('ai_summary', Text, nullable=False),
    Column('compatibility_insight', Text, nullable=False),
    Column('conversation_starters', Text, nullable=False),  # newline separated
    Column('dimension_scores', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
