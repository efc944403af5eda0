"""
Daily streak sweep.

Closes one UTC day: streaks where a partner has no check-in dated that day
slip one state (active -> at_risk -> payment_window), lapsed payment windows
expire, and reset streaks restart. A streak already moved for the day is
skipped, so closing a day twice is harmless. Each streak is moved in its own
transaction so one failure never blocks the rest of the sweep.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select

from unora.core.database import get_db_session, connections, streaks, check_ins
from unora.core.errors import AppError
from unora.features.streaks.state_machine import StreakStateMachine
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import ConnectionStatus
from unora.models.streak import StreakState

logger = logging.getLogger("unora.streaks.sweep")

_SWEPT_STATES = [
    StreakState.ACTIVE.value,
    StreakState.AT_RISK.value,
    StreakState.PAYMENT_WINDOW.value,
    StreakState.RESET.value,
]


def _plan(day: date, ts: datetime) -> List[Tuple[str, str, List[str]]]:
    """(action, streak_id, missing_user_ids) for every streak that needs a move."""
    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    actions: List[Tuple[str, str, List[str]]] = []

    with get_db_session() as session:
        rows = session.execute(
            select(
                streaks.c.id,
                streaks.c.state,
                streaks.c.created_at,
                streaks.c.recovery_deadline_at,
                streaks.c.last_missed_day,
                connections.c.user_a_id,
                connections.c.user_b_id,
            )
            .join(connections, connections.c.id == streaks.c.connection_id)
            .where(
                connections.c.status == ConnectionStatus.ACTIVE.value,
                connections.c.deleted_at.is_(None),
                streaks.c.deleted_at.is_(None),
                streaks.c.state.in_(_SWEPT_STATES),
            )
            .order_by(streaks.c.created_at, streaks.c.id)
        ).fetchall()

        for row in rows:
            if row.state == StreakState.PAYMENT_WINDOW.value:
                deadline = as_utc(row.recovery_deadline_at)
                if deadline is None or ts > deadline:
                    actions.append(("expire", row.id, []))
                continue
            if row.state == StreakState.RESET.value:
                actions.append(("restart", row.id, []))
                continue
            if as_utc(row.created_at) >= day_start:
                # Streak started that day; nobody owed a check-in yet
                continue
            if row.last_missed_day is not None and row.last_missed_day >= day:
                continue

            checked = set(
                session.execute(
                    select(check_ins.c.user_id).where(
                        check_ins.c.streak_id == row.id,
                        check_ins.c.check_in_date == day,
                    )
                ).scalars().all()
            )
            missing = [user_id for user_id in (row.user_a_id, row.user_b_id) if user_id not in checked]
            if missing:
                actions.append(("missed", row.id, missing))
    return actions


def close_day(
    day: Optional[date] = None,
    *,
    state_machine: Optional[StreakStateMachine] = None,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    """Apply missed-day, expiry and restart transitions for `day` (default: yesterday, UTC)."""
    ts = now or utc_now()
    target = day or (utc_day(ts) - timedelta(days=1))
    machine = state_machine or StreakStateMachine()

    counts = {"missed": 0, "expire": 0, "restart": 0, "errors": 0}
    for action, streak_id, missing in _plan(target, ts):
        try:
            if action == "missed":
                machine.mark_missed_day(streak_id, missing, now=ts, day=target)
            elif action == "expire":
                machine.expire_recovery_window(streak_id, now=ts)
            else:
                machine.restart(streak_id, now=ts)
            counts[action] += 1
        except AppError as exc:
            # A concurrent check-in or recovery moved the streak first
            counts["errors"] += 1
            logger.warning(
                "streak.sweep_skipped",
                extra={"streak_id": streak_id, "error_code": exc.code, "event_type": "streak.sweep_skipped"},
            )

    logger.info("streak.sweep_complete", extra={"event_type": "streak.sweep_complete"})
    return {"day": target.isoformat(), **counts}
