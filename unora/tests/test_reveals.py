import pytest
from sqlalchemy import insert

from unora.core.database import get_db_session, reveals
from unora.core.errors import (
    ConflictError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    PermissionError,
)
from unora.features.credits.ledger import list_transactions
from unora.features.matching.connections import ConnectionManager
from unora.features.reveals.milestones import DEFAULT_MILESTONES, list_milestones, seed_milestones
from unora.features.reveals.service import RevealUnlockEngine
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.users.service import get_user
from unora.models.reveal import RevealStatus, RevealType, UnlockMethod
from unora.models.user import TransactionType


@pytest.fixture
def engine():
    return RevealUnlockEngine()


@pytest.fixture
def milestones():
    return {milestone.reveal_number: milestone for milestone in list_milestones()}


def test_milestones_seeded_once():
    assert seed_milestones() == 0
    items = list_milestones()
    assert [(m.reveal_number, m.day_required, m.credit_cost) for m in items] == [
        (seed["reveal_number"], seed["day_required"], seed["credit_cost"]) for seed in DEFAULT_MILESTONES
    ]
    assert [m.reveal_type for m in items] == [RevealType.PERSONALITY, RevealType.VALUES, RevealType.LIFESTYLE]


def test_connection_reveals_start_locked(engine, pair):
    view = engine.connection_reveals("alice", pair.id)
    assert view.current_day == 1
    assert view.streak_active
    assert view.next_reveal_day == 5
    assert [item.status for item in view.reveals] == [RevealStatus.LOCKED] * 3
    assert not any(item.can_unlock for item in view.reveals)


def test_earned_unlock_at_day_required(engine, pair, streak_id, milestones, now):
    StreakStateMachine().adjust_day(streak_id, 5, now=now)

    view = engine.connection_reveals("alice", pair.id)
    assert view.reveals[0].can_unlock
    assert view.next_reveal_day == 10

    result = engine.unlock("alice", pair.id, milestones[1].id, use_credits=False, now=now)
    assert result.reveal.unlock_method == UnlockMethod.EARNED
    assert result.reveal.status == RevealStatus.UNLOCKED
    assert result.reveal.unlocked_at == now
    assert result.credits_used == 0
    assert result.remaining_credits == 200


def test_purchased_unlock_deducts_credits(engine, make_user, connect, milestones, now):
    make_user("carol", credits=100)
    make_user("dave")
    connection = connect("carol", "dave")
    StreakStateMachine().adjust_day(_streak_id(connection.id), 3, now=now)

    result = engine.unlock("carol", connection.id, milestones[1].id, use_credits=True, now=now)

    assert result.reveal.unlock_method == UnlockMethod.PURCHASED
    assert result.credits_used == 50
    assert result.remaining_credits == 50
    assert get_user("carol").credit_balance == 50
    tx = list_transactions("carol")[0]
    assert tx.transaction_type == TransactionType.EARLY_REVEAL
    assert tx.reference_id == result.reveal.id


def test_early_unlock_without_credits_flag_changes_nothing(engine, pair, milestones, now):
    with pytest.raises(InvalidStateError):
        engine.unlock("alice", pair.id, milestones[2].id, use_credits=False, now=now)
    assert get_user("alice").credit_balance == 200
    assert engine.connection_reveals("alice", pair.id).reveals[1].status == RevealStatus.LOCKED


def test_early_unlock_with_insufficient_credits(engine, make_user, connect, milestones, now):
    make_user("carol", credits=60)
    make_user("dave")
    connection = connect("carol", "dave")

    with pytest.raises(InsufficientFundsError):
        engine.unlock("carol", connection.id, milestones[2].id, use_credits=True, now=now)

    assert get_user("carol").credit_balance == 60
    assert list_transactions("carol") == []
    assert engine.connection_reveals("carol", connection.id).reveals[1].reveal_id is None


def test_unlock_twice_conflicts_for_either_partner(engine, pair, milestones, now):
    engine.unlock("alice", pair.id, milestones[1].id, use_credits=True, now=now)
    with pytest.raises(ConflictError):
        engine.unlock("bob", pair.id, milestones[1].id, use_credits=True, now=now)
    assert get_user("bob").credit_balance == 200


def test_unlock_fills_existing_locked_row(engine, pair, milestones, now):
    with get_db_session() as session:
        session.execute(
            insert(reveals).values(
                id="rev-locked",
                connection_id=pair.id,
                milestone_id=milestones[1].id,
                status=RevealStatus.LOCKED.value,
                created_at=now,
            )
        )
    result = engine.unlock("alice", pair.id, milestones[1].id, use_credits=True, now=now)
    assert result.reveal.id == "rev-locked"
    assert result.reveal.status == RevealStatus.UNLOCKED


def test_unlock_requires_active_connection(engine, pair, milestones, now):
    ConnectionManager().terminate_connection(pair.id, "alice", now=now)
    with pytest.raises(InvalidStateError):
        engine.unlock("alice", pair.id, milestones[1].id, use_credits=True, now=now)


def test_unlock_unknown_milestone(engine, pair, now):
    with pytest.raises(NotFoundError):
        engine.unlock("alice", pair.id, "no-such-milestone", use_credits=True, now=now)


def test_mark_viewed_rules(engine, pair, make_user, milestones, now):
    make_user("mallory")
    unlocked = engine.unlock("alice", pair.id, milestones[1].id, use_credits=True, now=now).reveal

    with pytest.raises(NotFoundError):
        engine.mark_viewed("missing", "alice", now=now)
    with pytest.raises(PermissionError):
        engine.mark_viewed(unlocked.id, "mallory", now=now)

    first = engine.mark_viewed(unlocked.id, "bob", now=now)
    assert first.changed
    assert first.reveal.status == RevealStatus.VIEWED
    assert first.reveal.viewed_at == now

    second = engine.mark_viewed(unlocked.id, "alice", now=now)
    assert not second.changed
    assert second.reveal.viewed_at == now


def test_mark_viewed_locked_reveal_is_invalid(engine, pair, milestones, now):
    with get_db_session() as session:
        session.execute(
            insert(reveals).values(
                id="rev-locked",
                connection_id=pair.id,
                milestone_id=milestones[2].id,
                status=RevealStatus.LOCKED.value,
                created_at=now,
            )
        )
    with pytest.raises(InvalidStateError):
        engine.mark_viewed("rev-locked", "alice", now=now)


def _streak_id(connection_id):
    from unora.features.streaks.service import StreakService

    return StreakService().streak_id_for_connection("carol", connection_id)
