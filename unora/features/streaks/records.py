"""Row mapping and shared queries for streak and check-in tables."""

from datetime import date
from typing import Optional

from sqlalchemy import select, and_

from unora.core.database import streaks, check_ins
from unora.core.errors import NotFoundError
from unora.models.common import as_utc
from unora.models.streak import CheckIn, Streak


def to_streak(row) -> Streak:
    return Streak(
        id=row.id,
        connection_id=row.connection_id,
        state=row.state,
        current_day=row.current_day,
        reset_count=row.reset_count,
        breaker_user_id=row.breaker_user_id,
        recovery_deadline_at=as_utc(row.recovery_deadline_at),
        recovery_payment_id=row.recovery_payment_id,
        health_score=row.health_score,
        last_missed_day=row.last_missed_day,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        completed_at=as_utc(row.completed_at),
    )


def to_check_in(row) -> CheckIn:
    return CheckIn(
        id=row.id,
        streak_id=row.streak_id,
        user_id=row.user_id,
        day_number=row.day_number,
        check_in_date=row.check_in_date,
        check_in_type=row.check_in_type,
        event_data=row.event_data,
        created_at=as_utc(row.created_at),
    )


def load_streak_row(session, streak_id: str, *, for_update: bool = False):
    stmt = select(streaks).where(streaks.c.id == streak_id, streaks.c.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    row = session.execute(stmt).first()
    if not row:
        raise NotFoundError(f"Streak {streak_id} not found")
    return row


def streak_row_for_connection(session, connection_id: str):
    return session.execute(
        select(streaks).where(streaks.c.connection_id == connection_id, streaks.c.deleted_at.is_(None))
    ).first()


def has_checked_in(session, streak_id: str, user_id: str, on: date, day_number: Optional[int] = None) -> bool:
    conditions = [
        check_ins.c.streak_id == streak_id,
        check_ins.c.user_id == user_id,
        check_ins.c.check_in_date == on,
    ]
    if day_number is not None:
        conditions.append(check_ins.c.day_number == day_number)
    return session.execute(select(check_ins.c.id).where(and_(*conditions)).limit(1)).first() is not None
