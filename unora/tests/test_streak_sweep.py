from datetime import date, datetime, timedelta, timezone

from unora.features.streaks.service import StreakService
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.streaks.sweep import close_day
from unora.models.streak import StreakState


def _state(pair):
    return StreakService().streak_for_connection("alice", pair.id).streak


def test_new_streak_is_not_swept_on_its_first_day(pair, now):
    summary = close_day(now.date(), now=now + timedelta(days=1))
    assert summary["missed"] == 0
    assert _state(pair).state == StreakState.ACTIVE


def test_missed_day_moves_streak_to_at_risk(pair, streak_id, now):
    day = date(2026, 3, 11)
    StreakStateMachine().check_in(streak_id, "alice", now=datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc))

    summary = close_day(day, now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))

    assert summary == {"day": "2026-03-11", "missed": 1, "expire": 0, "restart": 0, "errors": 0}
    assert _state(pair).state == StreakState.AT_RISK


def test_both_checked_in_is_left_alone(pair, streak_id):
    machine = StreakStateMachine()
    checked_at = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)
    machine.check_in(streak_id, "alice", now=checked_at)
    machine.check_in(streak_id, "bob", now=checked_at)

    summary = close_day(date(2026, 3, 11), now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))

    assert summary["missed"] == 0
    streak = _state(pair)
    assert streak.state == StreakState.ACTIVE
    assert streak.current_day == 2


def test_full_breakage_cycle(pair):
    close_day(date(2026, 3, 11), now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    close_day(date(2026, 3, 12), now=datetime(2026, 3, 13, 0, 5, tzinfo=timezone.utc))
    streak = _state(pair)
    assert streak.state == StreakState.PAYMENT_WINDOW
    assert streak.breaker_user_id in {"alice", "bob"}

    # Window still open: nothing to expire
    summary = close_day(date(2026, 3, 13), now=datetime(2026, 3, 13, 6, 0, tzinfo=timezone.utc))
    assert summary["expire"] == 0

    summary = close_day(date(2026, 3, 13), now=datetime(2026, 3, 14, 0, 10, tzinfo=timezone.utc))
    assert summary["expire"] == 1
    streak = _state(pair)
    assert streak.state == StreakState.RESET
    assert streak.reset_count == 1

    summary = close_day(date(2026, 3, 14), now=datetime(2026, 3, 15, 0, 5, tzinfo=timezone.utc))
    assert summary["restart"] == 1
    assert _state(pair).state == StreakState.ACTIVE


def test_default_day_is_yesterday(pair):
    summary = close_day(now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    assert summary["day"] == "2026-03-11"
    assert summary["missed"] == 1


def test_terminated_connections_are_skipped(pair, now):
    from unora.features.matching.connections import ConnectionManager

    ConnectionManager().terminate_connection(pair.id, "alice", now=now)
    summary = close_day(date(2026, 3, 11), now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    assert summary["missed"] == 0


def test_closing_the_same_day_twice_moves_streak_once(pair):
    day = date(2026, 3, 11)
    first = close_day(day, now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    second = close_day(day, now=datetime(2026, 3, 12, 6, 0, tzinfo=timezone.utc))

    assert first["missed"] == 1
    assert second == {"day": "2026-03-11", "missed": 0, "expire": 0, "restart": 0, "errors": 0}
    streak = _state(pair)
    assert streak.state == StreakState.AT_RISK
    assert streak.recovery_deadline_at is None
    assert streak.last_missed_day == day


def test_recovered_streak_is_not_penalised_again_for_the_same_day(pair, streak_id):
    day = date(2026, 3, 11)
    close_day(day, now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    StreakStateMachine().recover(streak_id, "alice", pay_with_credits=True, now=datetime(2026, 3, 12, 1, 0, tzinfo=timezone.utc))

    summary = close_day(day, now=datetime(2026, 3, 12, 2, 0, tzinfo=timezone.utc))
    assert summary["missed"] == 0
    assert _state(pair).state == StreakState.ACTIVE


def test_reset_streak_restarted_by_check_ins_is_not_restarted_again(pair, streak_id):
    machine = StreakStateMachine()
    close_day(date(2026, 3, 11), now=datetime(2026, 3, 12, 0, 5, tzinfo=timezone.utc))
    close_day(date(2026, 3, 12), now=datetime(2026, 3, 13, 0, 5, tzinfo=timezone.utc))
    close_day(date(2026, 3, 13), now=datetime(2026, 3, 14, 0, 10, tzinfo=timezone.utc))
    assert _state(pair).state == StreakState.RESET

    checked_at = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)
    machine.check_in(streak_id, "alice", now=checked_at)
    machine.check_in(streak_id, "bob", now=checked_at)

    summary = close_day(date(2026, 3, 14), now=datetime(2026, 3, 15, 0, 5, tzinfo=timezone.utc))
    assert summary["restart"] == 0
    assert summary["missed"] == 0
    streak = _state(pair)
    assert streak.state == StreakState.ACTIVE
    assert streak.current_day == 2
