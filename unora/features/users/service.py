"""
User lookups and counter updates.

Profile CRUD lives elsewhere; this module only reads profiles for response
payloads and moves the counters other components depend on. Counters are
changed with single guarded UPDATE statements, never read-modify-write.
"""

from datetime import date, datetime
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from unora.core.database import get_db_session, users
from unora.core.errors import ConflictError, NotFoundError, ValidationError
from unora.models.common import age_on, as_utc, utc_now
from unora.models.user import ProfileSummary, SubscriptionTier, User

_TIERS = {tier.value for tier in SubscriptionTier}


def _to_user(row) -> User:
    return User(
        user_id=row.user_id,
        first_name=row.first_name,
        city=row.city,
        birth_date=row.birth_date,
        photo_url=row.photo_url,
        subscription_tier=row.subscription_tier,
        credit_balance=row.credit_balance,
        active_connection_count=row.active_connection_count,
        free_recoveries_used=row.free_recoveries_used,
        status=row.status,
        created_at=as_utc(row.created_at),
    )


def load_user_row(session, user_id: str, *, for_update: bool = False):
    stmt = select(users).where(users.c.user_id == user_id, users.c.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    row = session.execute(stmt).first()
    if not row:
        raise NotFoundError(f"User {user_id} not found")
    return row


def create_user(
    user_id: str,
    *,
    first_name: Optional[str] = None,
    city: Optional[str] = None,
    birth_date: Optional[date] = None,
    photo_url: Optional[str] = None,
    subscription_tier: str = SubscriptionTier.FREE.value,
    credit_balance: int = 0,
    now: Optional[datetime] = None,
) -> User:
    if subscription_tier not in _TIERS:
        raise ValidationError(f"Unknown subscription tier: {subscription_tier}")
    if credit_balance < 0:
        raise ValidationError("credit_balance cannot be negative")

    try:
        with get_db_session() as session:
            session.execute(
                insert(users).values(
                    user_id=user_id,
                    first_name=first_name,
                    city=city,
                    birth_date=birth_date,
                    photo_url=photo_url,
                    subscription_tier=subscription_tier,
                    credit_balance=credit_balance,
                    active_connection_count=0,
                    free_recoveries_used=0,
                    status="active",
                    created_at=now or utc_now(),
                )
            )
    except IntegrityError:
        raise ConflictError(f"User {user_id} already exists")
    return get_user(user_id)


def get_user(user_id: str) -> User:
    with get_db_session() as session:
        return _to_user(load_user_row(session, user_id))


def set_subscription_tier(user_id: str, tier: str) -> User:
    if tier not in _TIERS:
        raise ValidationError(f"Unknown subscription tier: {tier}")
    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.user_id == user_id, users.c.deleted_at.is_(None))
            .values(subscription_tier=tier)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
    return get_user(user_id)


def increment_active_connections(session, user_id: str) -> None:
    result = session.execute(
        update(users)
        .where(users.c.user_id == user_id, users.c.deleted_at.is_(None))
        .values(active_connection_count=users.c.active_connection_count + 1)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"User {user_id} not found")


def consume_free_recovery(session, user_id: str, allowance: int) -> bool:
    """Use one free recovery if fewer than `allowance` have been used."""
    result = session.execute(
        update(users)
        .where(
            users.c.user_id == user_id,
            users.c.deleted_at.is_(None),
            users.c.free_recoveries_used < allowance,
        )
        .values(free_recoveries_used=users.c.free_recoveries_used + 1)
    )
    return result.rowcount == 1


def profile_summary(session, user_id: str, today: Optional[date] = None) -> ProfileSummary:
    row = session.execute(
        select(
            users.c.user_id,
            users.c.first_name,
            users.c.city,
            users.c.birth_date,
            users.c.photo_url,
        ).where(users.c.user_id == user_id)
    ).first()
    if not row:
        # Deleted or unknown partner: still render the row with the id only
        return ProfileSummary(user_id=user_id)
    return ProfileSummary(
        user_id=row.user_id,
        first_name=row.first_name,
        age=age_on(row.birth_date, today or utc_now().date()),
        city=row.city,
        photo_url=row.photo_url,
    )
