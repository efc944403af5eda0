"""Read-side views over connection streaks."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, or_, func

from unora.core.database import get_db_session, connections, streaks, check_ins
from unora.core.errors import NotFoundError
from unora.features.matching.connections import load_participant_connection
from unora.features.streaks.records import has_checked_in, load_streak_row, streak_row_for_connection, to_check_in, to_streak
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.tiers.policy import TierPolicy, tier_policy
from unora.features.users.service import load_user_row
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import ConnectionStatus
from unora.models.streak import (
    CHECK_IN_STATES,
    RECOVERABLE_STATES,
    RecoveryOptions,
    StreakState,
    StreakView,
    TodayStreakItem,
    TodayStreaks,
)


class StreakService:
    def __init__(self, state_machine: Optional[StreakStateMachine] = None, policy: TierPolicy = tier_policy):
        self.policy = policy
        self.state_machine = state_machine or StreakStateMachine(policy)

    def streak_id_for_connection(self, user_id: str, connection_id: str) -> str:
        with get_db_session() as session:
            load_participant_connection(session, connection_id, user_id)
            row = streak_row_for_connection(session, connection_id)
            if row is None:
                raise NotFoundError(f"No streak for connection {connection_id}")
            return row.id

    def streak_for_connection(self, user_id: str, connection_id: str, now: Optional[datetime] = None) -> StreakView:
        today = utc_day(now or utc_now())
        with get_db_session() as session:
            connection = load_participant_connection(session, connection_id, user_id)
            row = streak_row_for_connection(session, connection_id)
            if row is None:
                raise NotFoundError(f"No streak for connection {connection_id}")
            history = session.execute(
                select(check_ins)
                .where(check_ins.c.streak_id == row.id)
                .order_by(check_ins.c.day_number, check_ins.c.created_at)
            ).fetchall()
            return StreakView(
                streak=to_streak(row),
                my_check_in_today=has_checked_in(session, row.id, user_id, today),
                partner_check_in_today=has_checked_in(session, row.id, connection.partner_of(user_id), today),
                check_ins=[to_check_in(item) for item in history],
            )

    def today_streaks(self, user_id: str, now: Optional[datetime] = None) -> TodayStreaks:
        """Streaks that still take check-ins, with what each side did today."""
        today = utc_day(now or utc_now())
        participant = or_(connections.c.user_a_id == user_id, connections.c.user_b_id == user_id)
        with get_db_session() as session:
            rows = session.execute(
                select(streaks, connections.c.user_a_id, connections.c.user_b_id)
                .join(connections, connections.c.id == streaks.c.connection_id)
                .where(
                    participant,
                    connections.c.status == ConnectionStatus.ACTIVE.value,
                    connections.c.deleted_at.is_(None),
                    streaks.c.deleted_at.is_(None),
                    streaks.c.state.in_([state.value for state in CHECK_IN_STATES]),
                )
                .order_by(streaks.c.created_at.desc(), streaks.c.id)
            ).fetchall()

            items = []
            for row in rows:
                partner_id = row.user_b_id if row.user_a_id == user_id else row.user_a_id
                mine = has_checked_in(session, row.id, user_id, today)
                items.append(
                    TodayStreakItem(
                        streak_id=row.id,
                        connection_id=row.connection_id,
                        partner_user_id=partner_id,
                        current_day=row.current_day,
                        state=row.state,
                        needs_check_in=not mine,
                        partner_checked_in=has_checked_in(session, row.id, partner_id, today),
                    )
                )

            completed = session.execute(
                select(func.count())
                .select_from(streaks.join(connections, connections.c.id == streaks.c.connection_id))
                .where(
                    participant,
                    streaks.c.state == StreakState.COMPLETED.value,
                    streaks.c.deleted_at.is_(None),
                )
            ).scalar() or 0

        return TodayStreaks(
            streaks=items,
            pending_count=sum(1 for item in items if item.needs_check_in),
            completed_count=int(completed),
        )

    def recovery_options(self, user_id: str, streak_id: str, now: Optional[datetime] = None) -> RecoveryOptions:
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id)
            load_participant_connection(session, row.connection_id, user_id)
            user_row = load_user_row(session, user_id)
            deadline = as_utc(row.recovery_deadline_at)
            recoverable = row.state in {state.value for state in RECOVERABLE_STATES}
            return RecoveryOptions(
                streak_id=streak_id,
                can_recover=recoverable and (deadline is None or ts <= deadline),
                recovery_deadline=deadline,
                credit_cost=self.state_machine.recovery_cost(row.current_day),
                user_credits=user_row.credit_balance,
                free_recovery_available=self.policy.has_free_recovery(
                    user_row.subscription_tier, user_row.free_recoveries_used
                ),
            )
