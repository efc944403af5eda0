"""
Streak state machine.

States: active -> at_risk -> payment_window -> reset | terminated, and
active -> completed once both partners check in on day 15. reset goes back to
active at day 1, on the next sweep or as soon as both partners check in.

The day only advances when both partners have a check-in for the current day
dated today (UTC). The streak row is locked for the whole check-in and every
transition is an UPDATE guarded on the state (and day) it was read in, so two
partners checking in at the same moment advance the day exactly once.

Missed-day transitions are driven by the daily sweep (features/streaks/sweep.py);
this module only defines the transitions and their preconditions. The last
missed day is recorded on the streak so closing the same day twice moves it
only once.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unora.core.config import Settings, settings
from unora.core.database import get_db_session, streaks, check_ins, nudges
from unora.core.errors import (
    ConflictError,
    DeadlineExceededError,
    InvalidStateError,
    ValidationError,
)
from unora.core.logging import log_event
from unora.features.credits.ledger import deduct_credits, get_balance
from unora.features.matching.connections import load_connection_row, load_participant_connection, to_connection
from unora.features.streaks.records import has_checked_in, load_streak_row, to_check_in, to_streak
from unora.features.tiers.policy import TierPolicy, tier_policy
from unora.features.users.service import consume_free_recovery, load_user_row
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import ConnectionStatus
from unora.models.nudge import NudgeStatus
from unora.models.streak import (
    CHECK_IN_ACTIVITY_MAX_LENGTH,
    CHECK_IN_STATES,
    MAX_STREAK_DAY,
    RECOVERABLE_STATES,
    CheckInResult,
    CheckInType,
    RecoverStreakResult,
    Streak,
    StreakState,
)
from unora.models.user import TransactionType

logger = logging.getLogger("unora.streaks")

_CHECK_IN_STATE_VALUES = [state.value for state in CHECK_IN_STATES]


class StreakStateMachine:
    def __init__(self, policy: TierPolicy = tier_policy, settings_obj: Optional[Settings] = None):
        self.policy = policy
        self.settings = settings_obj or settings

    def recovery_cost(self, current_day: int) -> int:
        return self.settings.RECOVERY_BASE_COST + current_day * self.settings.RECOVERY_COST_PER_DAY

    # Check-ins --------------------------------------------------------
    def check_in(
        self,
        streak_id: str,
        user_id: str,
        activity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckInResult:
        if activity is not None and len(activity) > CHECK_IN_ACTIVITY_MAX_LENGTH:
            raise ValidationError(f"activity must be at most {CHECK_IN_ACTIVITY_MAX_LENGTH} characters")
        ts = now or utc_now()
        today = utc_day(ts)
        check_in_id = str(uuid4())
        advanced = completed = False

        try:
            with get_db_session() as session:
                row = load_streak_row(session, streak_id, for_update=True)
                connection = load_participant_connection(session, row.connection_id, user_id)
                if connection.status != ConnectionStatus.ACTIVE:
                    raise InvalidStateError("Connection is no longer active")
                if row.state not in _CHECK_IN_STATE_VALUES:
                    raise InvalidStateError(f"Cannot check in while streak is {row.state}")
                if has_checked_in(session, streak_id, user_id, today):
                    raise ConflictError("Already checked in today")

                day = row.current_day
                answered_nudge = self._respond_to_nudges(session, streak_id, user_id, today, ts)
                session.execute(
                    insert(check_ins).values(
                        id=check_in_id,
                        streak_id=streak_id,
                        user_id=user_id,
                        day_number=day,
                        check_in_date=today,
                        check_in_type=(CheckInType.NUDGE_RESPONSE if answered_nudge else CheckInType.MANUAL).value,
                        event_data={"activity": activity} if activity else None,
                        created_at=ts,
                    )
                )

                partner_id = connection.partner_of(user_id)
                if has_checked_in(session, streak_id, partner_id, today, day_number=day):
                    completed = day + 1 > MAX_STREAK_DAY
                    if completed:
                        values = dict(current_day=MAX_STREAK_DAY, state=StreakState.COMPLETED.value, completed_at=ts, updated_at=ts)
                    else:
                        values = dict(current_day=day + 1, state=StreakState.ACTIVE.value, updated_at=ts)
                    result = session.execute(
                        update(streaks)
                        .where(
                            streaks.c.id == streak_id,
                            streaks.c.current_day == day,
                            streaks.c.state.in_(_CHECK_IN_STATE_VALUES),
                        )
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise ConflictError("Streak changed concurrently; retry the check-in")
                    advanced = True

                streak = to_streak(load_streak_row(session, streak_id))
                check_in = to_check_in(
                    session.execute(select(check_ins).where(check_ins.c.id == check_in_id)).first()
                )
        except IntegrityError:
            raise ConflictError("Already checked in today")

        if advanced:
            event = "streak.completed" if completed else "streak.advanced"
            log_event(
                "info",
                event,
                request_id=None,
                user_id=user_id,
                connection_id=streak.connection_id,
                streak_id=streak_id,
                event_type=event,
                extra={"current_day": streak.current_day},
            )
        return CheckInResult(check_in=check_in, streak=streak, advanced=advanced, completed=completed)

    def _respond_to_nudges(self, session: Session, streak_id: str, user_id: str, today, ts: datetime) -> bool:
        result = session.execute(
            update(nudges)
            .where(
                nudges.c.streak_id == streak_id,
                nudges.c.receiver_user_id == user_id,
                nudges.c.nudge_date == today,
                nudges.c.status.in_([NudgeStatus.SENT.value, NudgeStatus.SEEN.value]),
            )
            .values(status=NudgeStatus.RESPONDED.value, responded_at=ts)
        )
        return bool(result.rowcount)

    # Breakage ---------------------------------------------------------
    def mark_missed_day(
        self,
        streak_id: str,
        missing_user_ids: Iterable[str],
        now: Optional[datetime] = None,
        day: Optional[date] = None,
    ) -> Streak:
        """
        active -> at_risk, or at_risk -> payment_window with a breaker and deadline.

        `day` is the UTC day being closed. It is recorded on the streak and a day
        on or before the recorded one raises ConflictError, so the sweep can be
        re-run safely. Without `day` the move is not tied to a calendar day.
        """
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            if day is not None and row.last_missed_day is not None and row.last_missed_day >= day:
                raise ConflictError(f"Missed day {day.isoformat()} already recorded for this streak")
            connection = to_connection(load_connection_row(session, row.connection_id))
            missing = [user_id for user_id in missing_user_ids if connection.has_participant(user_id)]
            if not missing:
                raise ValidationError("Missing users must be participants of the streak")

            if row.state == StreakState.ACTIVE.value:
                values = dict(state=StreakState.AT_RISK.value, updated_at=ts)
            elif row.state == StreakState.AT_RISK.value:
                values = dict(
                    state=StreakState.PAYMENT_WINDOW.value,
                    breaker_user_id=missing[0],
                    recovery_deadline_at=ts + timedelta(hours=self.settings.RECOVERY_WINDOW_HOURS),
                    updated_at=ts,
                )
            else:
                raise InvalidStateError(f"Cannot mark a missed day while streak is {row.state}")

            criteria = []
            if day is not None:
                values["last_missed_day"] = day
                criteria.append(or_(streaks.c.last_missed_day.is_(None), streaks.c.last_missed_day < day))
            streak = self._transition(session, row, values, *criteria)

        log_event(
            "info",
            "streak.missed_day",
            request_id=None,
            connection_id=streak.connection_id,
            streak_id=streak_id,
            event_type="streak.missed_day",
            extra={"state": streak.state.value, "missing": ",".join(missing), "day": day.isoformat() if day else None},
        )
        return streak

    def expire_recovery_window(self, streak_id: str, now: Optional[datetime] = None) -> Streak:
        """Close a lapsed payment window: reset to day 1, or terminate once resets run out."""
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            if row.state != StreakState.PAYMENT_WINDOW.value:
                raise InvalidStateError(f"No recovery window open while streak is {row.state}")
            deadline = as_utc(row.recovery_deadline_at)
            if deadline is not None and ts <= deadline:
                raise InvalidStateError("Recovery window is still open")

            if row.reset_count < self.settings.STREAK_MAX_RESETS:
                values = dict(
                    state=StreakState.RESET.value,
                    current_day=1,
                    reset_count=row.reset_count + 1,
                    breaker_user_id=None,
                    recovery_deadline_at=None,
                    updated_at=ts,
                )
            else:
                values = dict(state=StreakState.TERMINATED.value, recovery_deadline_at=None, updated_at=ts)

            streak = self._transition(session, row, values)

        log_event(
            "info",
            "streak.window_expired",
            request_id=None,
            connection_id=streak.connection_id,
            streak_id=streak_id,
            event_type="streak.window_expired",
            extra={"state": streak.state.value, "reset_count": streak.reset_count},
        )
        return streak

    def restart(self, streak_id: str, now: Optional[datetime] = None) -> Streak:
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            if row.state != StreakState.RESET.value:
                raise InvalidStateError(f"Only reset streaks can restart, streak is {row.state}")
            return self._transition(session, row, dict(state=StreakState.ACTIVE.value, updated_at=ts))

    # Recovery ---------------------------------------------------------
    def recover(self, streak_id: str, user_id: str, pay_with_credits: bool, now: Optional[datetime] = None) -> RecoverStreakResult:
        """Forgive a missed day before the deadline; the current day is preserved."""
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            load_participant_connection(session, row.connection_id, user_id)
            if row.state not in {state.value for state in RECOVERABLE_STATES}:
                raise InvalidStateError(f"Streak cannot be recovered while {row.state}")
            deadline = as_utc(row.recovery_deadline_at)
            if deadline is not None and ts > deadline:
                raise DeadlineExceededError("Recovery window has closed")

            cost = self.recovery_cost(row.current_day)
            credits_used = 0
            payment_id = None
            used_free = False
            if pay_with_credits:
                tx = deduct_credits(
                    session,
                    user_id,
                    cost,
                    TransactionType.STREAK_RECOVERY,
                    reference_type="streak",
                    reference_id=streak_id,
                    description=f"Streak recovery on day {row.current_day}",
                    now=ts,
                )
                payment_id = tx.id
                credits_used = cost
            else:
                user_row = load_user_row(session, user_id)
                allowance = self.policy.config_for(user_row.subscription_tier).free_recoveries
                if not self.policy.has_free_recovery(user_row.subscription_tier, user_row.free_recoveries_used) or not consume_free_recovery(session, user_id, allowance):
                    raise InvalidStateError("No free recoveries left; pay with credits")
                used_free = True

            streak = self._transition(
                session,
                row,
                dict(
                    state=StreakState.ACTIVE.value,
                    breaker_user_id=None,
                    recovery_deadline_at=None,
                    recovery_payment_id=payment_id,
                    updated_at=ts,
                ),
            )
            remaining = get_balance(session, user_id)

        log_event(
            "info",
            "streak.recovered",
            request_id=None,
            user_id=user_id,
            connection_id=streak.connection_id,
            streak_id=streak_id,
            event_type="streak.recovered",
            extra={"credits_used": credits_used, "free_recovery": used_free},
        )
        return RecoverStreakResult(
            streak=streak,
            credits_used=credits_used,
            used_free_recovery=used_free,
            remaining_credits=remaining,
        )

    # Admin ------------------------------------------------------------
    def reset(self, streak_id: str, now: Optional[datetime] = None) -> Streak:
        """Discard progress: back to day 1, active, one more reset on record."""
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            self._require_active_connection(session, row)
            streak = self._transition(
                session,
                row,
                dict(
                    state=StreakState.ACTIVE.value,
                    current_day=1,
                    reset_count=row.reset_count + 1,
                    breaker_user_id=None,
                    recovery_deadline_at=None,
                    completed_at=None,
                    updated_at=ts,
                ),
            )
        logger.info("streak.admin_reset", extra={"streak_id": streak_id, "event_type": "streak.admin_reset"})
        return streak

    def adjust_day(self, streak_id: str, day: int, now: Optional[datetime] = None) -> Streak:
        if not 1 <= day <= MAX_STREAK_DAY:
            raise ValidationError(f"day must be between 1 and {MAX_STREAK_DAY}")
        ts = now or utc_now()
        with get_db_session() as session:
            row = load_streak_row(session, streak_id, for_update=True)
            self._require_active_connection(session, row)
            if day == MAX_STREAK_DAY:
                values = dict(current_day=day, state=StreakState.COMPLETED.value, completed_at=ts, updated_at=ts)
            else:
                values = dict(current_day=day, state=StreakState.ACTIVE.value, completed_at=None, updated_at=ts)
            streak = self._transition(session, row, values)
        logger.info("streak.admin_adjust", extra={"streak_id": streak_id, "event_type": "streak.admin_adjust"})
        return streak

    # Internal helpers -------------------------------------------------
    def _require_active_connection(self, session: Session, row) -> None:
        connection = load_connection_row(session, row.connection_id)
        if connection.status != ConnectionStatus.ACTIVE.value:
            raise InvalidStateError("Connection is no longer active")

    def _transition(self, session: Session, row, values: Dict[str, Any], *criteria) -> Streak:
        result = session.execute(
            update(streaks)
            .where(
                streaks.c.id == row.id,
                streaks.c.state == row.state,
                streaks.c.current_day == row.current_day,
                *criteria,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise ConflictError("Streak changed concurrently; retry")
        return to_streak(load_streak_row(session, row.id))
