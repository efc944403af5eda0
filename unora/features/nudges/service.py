"""
Nudge tracker.

A nudge reminds a streak partner to check in. One nudge per sender, streak
and streak day per UTC day; the daily per-user quota from the tier policy is
enforced by the request layer, since it spans every streak the user has.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError

from unora.core.database import get_db_session, nudges
from unora.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from unora.core.logging import log_event
from unora.features.matching.connections import load_participant_connection
from unora.features.streaks.records import load_streak_row
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import ConnectionStatus
from unora.models.nudge import NUDGE_MESSAGE_MAX_LENGTH, Nudge, NudgeStatus
from unora.models.streak import CHECK_IN_STATES

RECEIVED_NUDGES_LIMIT = 50


def to_nudge(row) -> Nudge:
    return Nudge(
        id=row.id,
        streak_id=row.streak_id,
        sender_user_id=row.sender_user_id,
        receiver_user_id=row.receiver_user_id,
        day_number=row.day_number,
        nudge_date=row.nudge_date,
        status=row.status,
        message=row.message,
        created_at=as_utc(row.created_at),
        seen_at=as_utc(row.seen_at),
        responded_at=as_utc(row.responded_at),
    )


class NudgeTracker:
    def send_nudge(self, streak_id: str, sender_user_id: str, message: Optional[str] = None, now: Optional[datetime] = None) -> Nudge:
        if message is not None and len(message) > NUDGE_MESSAGE_MAX_LENGTH:
            raise ValidationError(f"message must be at most {NUDGE_MESSAGE_MAX_LENGTH} characters")
        ts = now or utc_now()
        today = utc_day(ts)
        nudge_id = str(uuid4())

        try:
            with get_db_session() as session:
                row = load_streak_row(session, streak_id)
                connection = load_participant_connection(session, row.connection_id, sender_user_id)
                if connection.status != ConnectionStatus.ACTIVE or row.state not in {s.value for s in CHECK_IN_STATES}:
                    raise InvalidStateError(f"Cannot nudge while streak is {row.state}")

                duplicate = session.execute(
                    select(nudges.c.id).where(
                        nudges.c.streak_id == streak_id,
                        nudges.c.sender_user_id == sender_user_id,
                        nudges.c.day_number == row.current_day,
                        nudges.c.nudge_date == today,
                    )
                ).first()
                if duplicate:
                    raise ConflictError("Already sent a nudge today")

                session.execute(
                    insert(nudges).values(
                        id=nudge_id,
                        streak_id=streak_id,
                        sender_user_id=sender_user_id,
                        receiver_user_id=connection.partner_of(sender_user_id),
                        day_number=row.current_day,
                        nudge_date=today,
                        status=NudgeStatus.SENT.value,
                        message=message,
                        created_at=ts,
                    )
                )
                nudge = to_nudge(session.execute(select(nudges).where(nudges.c.id == nudge_id)).first())
        except IntegrityError:
            raise ConflictError("Already sent a nudge today")

        log_event(
            "info",
            "nudge.sent",
            request_id=None,
            user_id=sender_user_id,
            connection_id=connection.id,
            streak_id=streak_id,
            event_type="nudge.sent",
        )
        return nudge

    def nudges_sent_today(self, user_id: str, now: Optional[datetime] = None) -> int:
        today = utc_day(now or utc_now())
        with get_db_session() as session:
            count = session.execute(
                select(func.count()).select_from(nudges).where(
                    nudges.c.sender_user_id == user_id,
                    nudges.c.nudge_date == today,
                )
            ).scalar()
        return int(count or 0)

    def received_nudges(self, user_id: str, limit: int = RECEIVED_NUDGES_LIMIT) -> List[Nudge]:
        """Unanswered nudges for the user, newest first."""
        with get_db_session() as session:
            rows = session.execute(
                select(nudges)
                .where(
                    nudges.c.receiver_user_id == user_id,
                    nudges.c.status.in_([NudgeStatus.SENT.value, NudgeStatus.SEEN.value]),
                )
                .order_by(nudges.c.created_at.desc(), nudges.c.id)
                .limit(limit)
            ).fetchall()
            return [to_nudge(row) for row in rows]

    def mark_seen(self, nudge_id: str, user_id: str, now: Optional[datetime] = None) -> Nudge:
        ts = now or utc_now()
        with get_db_session() as session:
            row = session.execute(select(nudges).where(nudges.c.id == nudge_id)).first()
            if not row or row.receiver_user_id != user_id:
                raise NotFoundError(f"Nudge {nudge_id} not found")
            if row.status == NudgeStatus.SENT.value:
                session.execute(
                    update(nudges)
                    .where(nudges.c.id == nudge_id, nudges.c.status == NudgeStatus.SENT.value)
                    .values(status=NudgeStatus.SEEN.value, seen_at=ts)
                )
            return to_nudge(session.execute(select(nudges).where(nudges.c.id == nudge_id)).first())
