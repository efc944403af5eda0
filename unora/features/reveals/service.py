"""
Reveal unlock engine.

A reveal is earned free once the streak reaches the milestone's day, or bought
early with credits. The unlock transaction is authoritative: content is
generated afterwards (see content.py) and a failure there never undoes the
unlock. Reveals are due for content as soon as they unlock, so the retry
worker picks up any that the request never got to.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from unora.core.database import get_db_session, reveals, reveal_contents
from unora.core.errors import ConflictError, InvalidStateError, NotFoundError, PermissionError
from unora.core.logging import log_event
from unora.features.credits.ledger import deduct_credits, get_balance
from unora.features.matching.connections import load_connection_row, load_participant_connection, to_connection
from unora.features.reveals.milestones import active_milestones, list_milestones, load_milestone
from unora.features.streaks.records import streak_row_for_connection
from unora.models.common import as_utc, utc_now
from unora.models.matching import ConnectionStatus
from unora.models.reveal import (
    ConnectionReveals,
    MarkViewedResult,
    Reveal,
    RevealContent,
    RevealItem,
    RevealMilestone,
    RevealStatus,
    UnlockMethod,
    UnlockRevealResult,
)
from unora.models.streak import TERMINAL_STATES, StreakState
from unora.models.user import TransactionType


def to_reveal(row) -> Reveal:
    return Reveal(
        id=row.id,
        connection_id=row.connection_id,
        milestone_id=row.milestone_id,
        unlock_method=row.unlock_method,
        status=row.status,
        created_at=as_utc(row.created_at),
        unlocked_at=as_utc(row.unlocked_at),
        viewed_at=as_utc(row.viewed_at),
    )


def to_content(row) -> RevealContent:
    return RevealContent(
        ai_summary=row.ai_summary,
        compatibility_insight=row.compatibility_insight,
        conversation_starters=[line for line in (row.conversation_starters or "").split("\n") if line.strip()],
        dimension_scores=row.dimension_scores or {},
    )


class RevealUnlockEngine:
    def milestones(self) -> List[RevealMilestone]:
        return list_milestones()

    def connection_reveals(self, user_id: str, connection_id: str) -> ConnectionReveals:
        with get_db_session() as session:
            connection = load_participant_connection(session, connection_id, user_id)
            streak = streak_row_for_connection(session, connection_id)
            current_day = streak.current_day if streak is not None else 1
            streak_active = (
                connection.status == ConnectionStatus.ACTIVE
                and streak is not None
                and StreakState(streak.state) not in TERMINAL_STATES
            )

            rows = session.execute(select(reveals).where(reveals.c.connection_id == connection_id)).fetchall()
            by_milestone = {row.milestone_id: row for row in rows}
            contents: Dict[str, RevealContent] = {}
            if rows:
                content_rows = session.execute(
                    select(reveal_contents).where(reveal_contents.c.reveal_id.in_([row.id for row in rows]))
                ).fetchall()
                contents = {row.reveal_id: to_content(row) for row in content_rows}

            items: List[RevealItem] = []
            next_day: Optional[int] = None
            for milestone in active_milestones(session):
                row = by_milestone.get(milestone.id)
                locked = row is None or row.status == RevealStatus.LOCKED.value
                if locked and milestone.day_required > current_day:
                    next_day = milestone.day_required if next_day is None else min(next_day, milestone.day_required)
                if locked:
                    items.append(
                        RevealItem(
                            milestone=milestone,
                            reveal_id=row.id if row is not None else None,
                            status=RevealStatus.LOCKED,
                            can_unlock=current_day >= milestone.day_required,
                        )
                    )
                    continue
                items.append(
                    RevealItem(
                        milestone=milestone,
                        reveal_id=row.id,
                        status=row.status,
                        can_unlock=False,
                        unlock_method=row.unlock_method,
                        unlocked_at=as_utc(row.unlocked_at),
                        viewed_at=as_utc(row.viewed_at),
                        content=contents.get(row.id),
                    )
                )

        return ConnectionReveals(
            connection_id=connection_id,
            current_day=current_day,
            streak_active=streak_active,
            reveals=items,
            next_reveal_day=next_day,
        )

    def unlock(
        self,
        user_id: str,
        connection_id: str,
        milestone_id: str,
        use_credits: bool,
        now: Optional[datetime] = None,
    ) -> UnlockRevealResult:
        ts = now or utc_now()
        credits_used = 0
        try:
            with get_db_session() as session:
                connection = load_participant_connection(session, connection_id, user_id)
                if connection.status != ConnectionStatus.ACTIVE:
                    raise InvalidStateError("Connection is no longer active")
                milestone = load_milestone(session, milestone_id)
                streak = streak_row_for_connection(session, connection_id)
                current_day = streak.current_day if streak is not None else 1

                existing = session.execute(
                    select(reveals)
                    .where(reveals.c.connection_id == connection_id, reveals.c.milestone_id == milestone_id)
                    .with_for_update()
                ).first()
                if existing is not None and existing.status != RevealStatus.LOCKED.value:
                    raise ConflictError("Reveal already unlocked")
                reveal_id = existing.id if existing is not None else str(uuid4())

                if current_day >= milestone.day_required:
                    method = UnlockMethod.EARNED
                elif not use_credits:
                    raise InvalidStateError(
                        f"Not enough streak days: unlocks on day {milestone.day_required}, use credits to unlock early"
                    )
                else:
                    deduct_credits(
                        session,
                        user_id,
                        milestone.credit_cost,
                        TransactionType.EARLY_REVEAL,
                        reference_type="reveal",
                        reference_id=reveal_id,
                        description=f"Early {milestone.reveal_type.value} reveal",
                        now=ts,
                    )
                    method = UnlockMethod.PURCHASED
                    credits_used = milestone.credit_cost

                values = dict(
                    unlock_method=method.value,
                    status=RevealStatus.UNLOCKED.value,
                    unlocked_at=ts,
                    content_next_attempt_at=ts,
                )
                if existing is not None:
                    result = session.execute(
                        update(reveals)
                        .where(reveals.c.id == reveal_id, reveals.c.status == RevealStatus.LOCKED.value)
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise ConflictError("Reveal already unlocked")
                else:
                    session.execute(
                        insert(reveals).values(
                            id=reveal_id,
                            connection_id=connection_id,
                            milestone_id=milestone_id,
                            created_at=ts,
                            **values,
                        )
                    )

                reveal = to_reveal(session.execute(select(reveals).where(reveals.c.id == reveal_id)).first())
                remaining = get_balance(session, user_id)
        except IntegrityError:
            raise ConflictError("Reveal already unlocked")

        log_event(
            "info",
            "reveal.unlocked",
            request_id=None,
            user_id=user_id,
            connection_id=connection_id,
            event_type="reveal.unlocked",
            extra={"milestone_id": milestone_id, "method": method.value, "credits_used": credits_used},
        )
        return UnlockRevealResult(reveal=reveal, credits_used=credits_used, remaining_credits=remaining)

    def mark_viewed(self, reveal_id: str, user_id: str, now: Optional[datetime] = None) -> MarkViewedResult:
        ts = now or utc_now()
        with get_db_session() as session:
            row = session.execute(select(reveals).where(reveals.c.id == reveal_id)).first()
            if not row:
                raise NotFoundError(f"Reveal {reveal_id} not found")
            connection = to_connection(load_connection_row(session, row.connection_id))
            if not connection.has_participant(user_id):
                raise PermissionError("Only connection participants can view this reveal")
            if row.status == RevealStatus.LOCKED.value:
                raise InvalidStateError("Reveal is still locked")
            if row.status == RevealStatus.VIEWED.value:
                return MarkViewedResult(reveal=to_reveal(row), changed=False)

            session.execute(
                update(reveals)
                .where(reveals.c.id == reveal_id, reveals.c.status == RevealStatus.UNLOCKED.value)
                .values(status=RevealStatus.VIEWED.value, viewed_at=ts)
            )
            reveal = to_reveal(session.execute(select(reveals).where(reveals.c.id == reveal_id)).first())
        return MarkViewedResult(reveal=reveal, changed=True)
