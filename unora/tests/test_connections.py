from datetime import date, timedelta

import pytest
from sqlalchemy import select

from unora.core.database import get_db_session, streaks
from unora.core.errors import ConflictError, NotFoundError, QuotaExceededError, ValidationError
from unora.features.matching.connections import ConnectionManager, canonical_pair
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.users.service import get_user
from unora.models.matching import ConnectionStatus
from unora.models.streak import StreakState


def _streak_state(connection_id):
    with get_db_session() as session:
        return session.execute(
            select(streaks.c.state).where(streaks.c.connection_id == connection_id)
        ).scalar()


def test_canonical_pair_orders_ids():
    assert canonical_pair("zoe", "adam") == ("adam", "zoe")
    assert canonical_pair("adam", "zoe") == ("adam", "zoe")


def test_connection_stored_in_canonical_order(make_user, connect):
    make_user("zoe")
    make_user("adam")
    connection = connect("zoe", "adam")
    assert connection.user_a_id == "adam"
    assert connection.user_b_id == "zoe"
    assert connection.partner_of("adam") == "zoe"


def test_create_connection_rejects_existing_pair(make_user, now):
    make_user("alice", tier="pro")
    make_user("bob", tier="pro")
    manager = ConnectionManager()
    with get_db_session() as session:
        manager.create_connection(session, "alice", "bob", "partner", now)

    with pytest.raises(ConflictError):
        with get_db_session() as session:
            manager.create_connection(session, "bob", "alice", "partner", now)


def test_create_connection_checks_both_users_capacity(make_user, connect, now):
    make_user("alice")
    make_user("bob")
    make_user("carol", tier="pro")
    connect("alice", "bob")

    with pytest.raises(QuotaExceededError):
        with get_db_session() as session:
            ConnectionManager().create_connection(session, "carol", "alice", "partner", now)
    assert get_user("carol").active_connection_count == 0


def test_create_connection_rejects_self(make_user, now):
    make_user("alice")
    with pytest.raises(ValidationError):
        with get_db_session() as session:
            ConnectionManager().create_connection(session, "alice", "alice", "partner", now)


def test_terminate_cascades_to_streak_and_keeps_slot_used(pair, now):
    manager = ConnectionManager()
    terminated = manager.terminate_connection(pair.id, "bob", now=now)

    assert terminated.status == ConnectionStatus.TERMINATED
    assert terminated.terminated_at == now
    assert _streak_state(pair.id) == StreakState.TERMINATED.value
    assert get_user("alice").active_connection_count == 1
    assert get_user("bob").active_connection_count == 1
    assert manager.list_connections("alice") == []


def test_terminate_is_idempotent(pair, now):
    manager = ConnectionManager()
    first = manager.terminate_connection(pair.id, "alice", now=now)
    second = manager.terminate_connection(pair.id, "alice", now=now + timedelta(hours=1))
    assert second.status == ConnectionStatus.TERMINATED
    assert second.terminated_at == first.terminated_at


def test_terminate_leaves_completed_streak_alone(pair, streak_id, now):
    StreakStateMachine().adjust_day(streak_id, 15, now=now)
    ConnectionManager().terminate_connection(pair.id, "alice", now=now)
    assert _streak_state(pair.id) == StreakState.COMPLETED.value


def test_non_participant_cannot_see_or_terminate(pair, make_user, now):
    make_user("mallory")
    manager = ConnectionManager()
    with pytest.raises(NotFoundError):
        manager.get_connection("mallory", pair.id)
    with pytest.raises(NotFoundError):
        manager.terminate_connection(pair.id, "mallory", now=now)


def test_connection_view_has_partner_and_streak(make_user, connect, now):
    make_user("alice", first_name="Alice", birth_date=date(1996, 5, 1))
    make_user("bob", first_name="Bob", city="York", birth_date=date(1994, 8, 20))
    connection = connect("alice", "bob")

    views = ConnectionManager().list_connections("alice", now=now)
    assert len(views) == 1
    view = views[0]
    assert view.connection.id == connection.id
    assert view.partner.user_id == "bob"
    assert view.partner.first_name == "Bob"
    assert view.partner.city == "York"
    assert view.partner.age == 31
    assert view.streak.current_day == 1
    assert view.streak.needs_check_in is True


def test_needs_check_in_clears_after_check_in(pair, streak_id, now):
    StreakStateMachine().check_in(streak_id, "alice", now=now)
    manager = ConnectionManager()
    assert manager.get_connection("alice", pair.id, now=now).streak.needs_check_in is False
    assert manager.get_connection("bob", pair.id, now=now).streak.needs_check_in is True
