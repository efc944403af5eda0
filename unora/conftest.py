# unora/conftest.py
from datetime import datetime, timezone

import pytest


@pytest.fixture(scope="function", autouse=True)
def database():
    """
    Fresh in-memory SQLite schema per test, with reveal milestones seeded.

    One shared connection (StaticPool) keeps the in-memory database alive
    across sessions opened by services and the TestClient thread.
    """
    from unora.core.database import init_engine, create_all_tables, drop_all_tables, dispose_engine
    from unora.features.reveals.milestones import seed_milestones

    init_engine("sqlite+pysqlite:///:memory:")
    create_all_tables()
    seed_milestones()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def now():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_user(now):
    from unora.features.users.service import create_user

    def _make(user_id: str, tier: str = "free", credits: int = 0, **profile):
        return create_user(user_id, subscription_tier=tier, credit_balance=credits, now=now, **profile)

    return _make


@pytest.fixture
def make_card(now):
    from unora.features.discovery.cards import deal_card

    def _make(owner_user_id: str, candidate_user_id: str, server_type: str = "partner"):
        return deal_card(owner_user_id, candidate_user_id, server_type, now=now)

    return _make


@pytest.fixture
def connect(make_card, now):
    """Match two existing users through mutual interest; returns the connection."""
    from unora.features.matching.interests import InterestLedger

    def _connect(first_user_id: str, second_user_id: str, server_type: str = "partner", at=None):
        ledger = InterestLedger()
        ts = at or now
        ledger.express_interest(first_user_id, make_card(first_user_id, second_user_id, server_type).id, now=ts)
        result = ledger.express_interest(second_user_id, make_card(second_user_id, first_user_id, server_type).id, now=ts)
        assert result.matched
        return result.connection

    return _connect


@pytest.fixture
def pair(make_user, connect):
    """alice and bob (free tier, 200 credits each) with an active connection."""
    make_user("alice", credits=200, first_name="Alice", city="Leeds")
    make_user("bob", credits=200, first_name="Bob", city="York")
    return connect("alice", "bob")


@pytest.fixture
def streak_id(pair):
    from unora.core.database import get_db_session
    from unora.features.streaks.records import streak_row_for_connection

    with get_db_session() as session:
        return streak_row_for_connection(session, pair.id).id


@pytest.fixture
def admin_key(monkeypatch):
    from unora.core.config import settings

    monkeypatch.setattr(settings, "ADMIN_KEY", "test-admin-key")
    return "test-admin-key"


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from unora.main import app

    return TestClient(app)
