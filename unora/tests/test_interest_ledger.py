import logging
from datetime import timedelta

import pytest
from sqlalchemy import func, insert, select

from unora.core.database import connections, get_db_session, interests, streaks
from unora.core.errors import ConflictError, NotFoundError, QuotaExceededError, ValidationError
from unora.features.matching.interests import InterestLedger
from unora.features.users.service import get_user
from unora.models.matching import InterestStatus
from unora.models.streak import StreakState


def _statuses(sender):
    with get_db_session() as session:
        rows = session.execute(
            select(interests.c.receiver_user_id, interests.c.status, interests.c.deleted_at)
            .where(interests.c.sender_user_id == sender)
        ).fetchall()
    return {row.receiver_user_id: (row.status, row.deleted_at is not None) for row in rows}


def test_one_way_interest_stays_pending(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()

    result = ledger.express_interest("alice", make_card("alice", "bob").id, now=now)

    assert not result.matched
    assert result.connection is None
    assert result.interest.status == InterestStatus.PENDING
    assert result.interest.receiver_user_id == "bob"
    assert [item.interest.sender_user_id for item in ledger.received_interests("bob")] == ["alice"]


def test_mutual_interest_creates_connection_and_streak(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()

    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)
    result = ledger.express_interest("bob", make_card("bob", "alice").id, now=now + timedelta(minutes=5))

    assert result.matched
    connection = result.connection
    assert (connection.user_a_id, connection.user_b_id) == ("alice", "bob")
    assert result.interest.status == InterestStatus.MATCHED

    with get_db_session() as session:
        matched = session.execute(
            select(interests.c.matched_at).where(interests.c.status == InterestStatus.MATCHED.value)
        ).scalars().all()
        streak = session.execute(select(streaks).where(streaks.c.connection_id == connection.id)).first()
    assert len(matched) == 2
    assert matched[0] == matched[1]
    assert streak.current_day == 1
    assert streak.state == StreakState.ACTIVE.value

    assert get_user("alice").active_connection_count == 1
    assert get_user("bob").active_connection_count == 1


def test_duplicate_pending_interest_conflicts(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()
    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)

    with pytest.raises(ConflictError):
        ledger.express_interest("alice", make_card("alice", "bob").id, now=now)


def test_interest_in_self_rejected(make_user, make_card, now):
    make_user("alice")
    with pytest.raises(ValidationError):
        InterestLedger().express_interest("alice", make_card("alice", "alice").id, now=now)


def test_card_dealt_to_someone_else_is_not_found(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    make_user("carol")
    card = make_card("carol", "bob")

    with pytest.raises(NotFoundError):
        InterestLedger().express_interest("alice", card.id, now=now)


def test_total_wipe_clears_outgoing_interests_when_slots_full(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    make_user("carol")
    make_user("dave")
    ledger = InterestLedger()

    ledger.express_interest("alice", make_card("alice", "carol").id, now=now)
    ledger.express_interest("dave", make_card("dave", "alice").id, now=now)
    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)
    ledger.express_interest("bob", make_card("bob", "alice").id, now=now)

    alice_sent = _statuses("alice")
    assert alice_sent["carol"] == (InterestStatus.WIPED.value, True)
    assert alice_sent["bob"] == (InterestStatus.MATCHED.value, False)
    # Incoming interests are left alone
    assert _statuses("dave")["alice"] == (InterestStatus.PENDING.value, False)
    assert [item.interest.receiver_user_id for item in ledger.sent_interests("alice")] == ["bob"]


def test_no_wipe_while_slots_remain(make_user, make_card, now):
    make_user("alice", tier="plus")
    make_user("bob", tier="plus")
    make_user("carol")
    ledger = InterestLedger()

    ledger.express_interest("alice", make_card("alice", "carol").id, now=now)
    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)
    ledger.express_interest("bob", make_card("bob", "alice").id, now=now)

    assert _statuses("alice")["carol"] == (InterestStatus.PENDING.value, False)


def test_match_beyond_capacity_is_rejected_and_rolled_back(make_user, make_card, connect, now):
    make_user("alice")
    make_user("bob")
    make_user("dave")
    connect("alice", "bob")
    ledger = InterestLedger()

    ledger.express_interest("dave", make_card("dave", "alice").id, now=now)
    with pytest.raises(QuotaExceededError):
        ledger.express_interest("alice", make_card("alice", "dave").id, now=now)

    assert get_user("alice").active_connection_count == 1
    assert get_user("dave").active_connection_count == 0
    assert "dave" not in _statuses("alice")


def test_match_on_other_server_is_separate(make_user, make_card, now):
    make_user("alice", tier="pro")
    make_user("bob", tier="pro")
    ledger = InterestLedger()

    ledger.express_interest("alice", make_card("alice", "bob", "partner").id, now=now)
    result = ledger.express_interest("bob", make_card("bob", "alice", "friend").id, now=now)

    assert not result.matched
    assert len(ledger.received_interests("alice")) == 1


def test_received_lists_only_pending(make_user, make_card, connect, now):
    make_user("alice")
    make_user("bob")
    make_user("carol")
    connect("alice", "bob")
    ledger = InterestLedger()
    ledger.express_interest("carol", make_card("carol", "alice").id, now=now)

    received = ledger.received_interests("alice")
    assert [item.interest.sender_user_id for item in received] == ["carol"]
    assert received[0].other_user.user_id == "carol"


def test_expire_interests_between_both_directions(make_user, make_card, now):
    make_user("alice", tier="pro")
    make_user("bob", tier="pro")
    ledger = InterestLedger()
    ledger.express_interest("alice", make_card("alice", "bob", "partner").id, now=now)
    ledger.express_interest("bob", make_card("bob", "alice", "friend").id, now=now)

    with get_db_session() as session:
        expired = ledger.expire_interests_between(session, "alice", "bob", now)

    assert expired == 2
    assert _statuses("alice")["bob"] == (InterestStatus.EXPIRED.value, True)
    assert ledger.sent_interests("bob") == []


def _pending(interest_id, sender, receiver, at):
    with get_db_session() as session:
        session.execute(
            insert(interests).values(
                id=interest_id,
                sender_user_id=sender,
                receiver_user_id=receiver,
                server_type="partner",
                status=InterestStatus.PENDING.value,
                created_at=at,
            )
        )


def _connection_count():
    with get_db_session() as session:
        return session.execute(select(func.count()).select_from(connections)).scalar_one()


def test_crossed_interests_settle_into_one_connection(make_user, make_card, now):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()
    own = ledger.express_interest("alice", make_card("alice", "bob").id, now=now).interest
    # bob's interest committed after alice's reciprocal lookup
    _pending("crossed-bob", "bob", "alice", now)

    connection = ledger._settle_crossed(own.id, now + timedelta(seconds=1))

    assert connection is not None
    assert _connection_count() == 1
    with get_db_session() as session:
        rows = session.execute(
            select(interests.c.status, interests.c.matched_at).where(interests.c.id.in_([own.id, "crossed-bob"]))
        ).fetchall()
    assert {row.status for row in rows} == {InterestStatus.MATCHED.value}
    assert rows[0].matched_at == rows[1].matched_at
    assert get_user("alice").active_connection_count == 1
    assert get_user("bob").active_connection_count == 1

    # Settling the other side finds nothing left to match
    assert ledger._settle_crossed("crossed-bob", now + timedelta(seconds=2)) is None
    assert _connection_count() == 1


def test_crossed_settle_skipped_when_pair_already_connected(make_user, connect, now, caplog):
    make_user("alice", tier="pro")
    make_user("bob", tier="pro")
    connect("alice", "bob")
    _pending("again-alice", "alice", "bob", now)
    _pending("again-bob", "bob", "alice", now)

    with caplog.at_level(logging.WARNING, logger="unora"):
        assert InterestLedger()._settle_crossed("again-alice", now) is None

    assert _connection_count() == 1
    with get_db_session() as session:
        still_pending = session.execute(
            select(interests.c.id).where(interests.c.status == InterestStatus.PENDING.value)
        ).scalars().all()
    assert sorted(still_pending) == ["again-alice", "again-bob"]
    assert any(getattr(r, "event_type", None) == "interest.settle_skipped" for r in caplog.records)


def test_connection_created_logged_after_commit(make_user, make_card, now, caplog):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()
    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)

    with caplog.at_level(logging.INFO, logger="unora"):
        result = ledger.express_interest("bob", make_card("bob", "alice").id, now=now)

    created = [r for r in caplog.records if getattr(r, "event_type", None) == "connection.created"]
    assert len(created) == 1
    assert created[0].connection_id == result.connection.id


def test_rolled_back_match_logs_no_connection(make_user, make_card, now, caplog, monkeypatch):
    make_user("alice")
    make_user("bob")
    ledger = InterestLedger()
    ledger.express_interest("alice", make_card("alice", "bob").id, now=now)

    def wipe_fails(session, user_id, ts):
        raise ConflictError("Interest was resolved by a concurrent request")

    monkeypatch.setattr(ledger, "_total_wipe", wipe_fails)
    with caplog.at_level(logging.INFO, logger="unora"):
        with pytest.raises(ConflictError):
            ledger.express_interest("bob", make_card("bob", "alice").id, now=now)

    assert _connection_count() == 0
    assert not [r for r in caplog.records if getattr(r, "event_type", None) == "connection.created"]
