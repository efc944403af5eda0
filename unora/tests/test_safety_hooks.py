import pytest

from unora.core.errors import ValidationError
from unora.features.matching.connections import ConnectionManager
from unora.features.matching.interests import InterestLedger
from unora.features.safety.service import SafetyHooks
from unora.features.streaks.service import StreakService
from unora.models.streak import StreakState


def test_block_terminates_connection_and_expires_interests(make_user, make_card, connect, now):
    make_user("alice", tier="pro")
    make_user("bob", tier="pro")
    make_user("carol", tier="pro")
    connection = connect("alice", "bob", "partner")
    ledger = InterestLedger()
    ledger.express_interest("bob", make_card("bob", "alice", "friend").id, now=now)
    ledger.express_interest("carol", make_card("carol", "alice", "friend").id, now=now)

    result = SafetyHooks().on_user_blocked("alice", "bob", now=now)

    assert result == {"terminated_connections": [connection.id], "expired_interests": 1}
    assert ConnectionManager().list_connections("alice") == []
    assert [item.interest.sender_user_id for item in ledger.received_interests("alice")] == ["carol"]
    streak = StreakService().streak_for_connection("bob", connection.id).streak
    assert streak.state == StreakState.TERMINATED


def test_report_runs_same_cleanup(make_user, connect, now):
    make_user("alice")
    make_user("bob")
    connection = connect("alice", "bob")
    result = SafetyHooks().on_user_reported("bob", "alice", now=now)
    assert result["terminated_connections"] == [connection.id]


def test_block_without_history_is_noop(make_user, now):
    make_user("alice")
    make_user("bob")
    assert SafetyHooks().on_user_blocked("alice", "bob", now=now) == {
        "terminated_connections": [],
        "expired_interests": 0,
    }


def test_cannot_block_self(now):
    with pytest.raises(ValidationError):
        SafetyHooks().on_user_blocked("alice", "alice", now=now)
