"""
Connection manager.

A connection is the symmetric pair created when two users express interest
in each other on the same server. Pairs are stored in canonical order
(user_a_id < user_b_id) so the partial unique index on active connections is
order independent. Every connection owns exactly one streak, created in the
same transaction.

Terminating a connection does not give the slot back: active_connection_count
only ever grows within a tier cycle.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update, or_
from sqlalchemy.orm import Session

from unora.core.database import get_db_session, connections, streaks
from unora.core.errors import ConflictError, NotFoundError, QuotaExceededError, ValidationError
from unora.core.logging import log_event
from unora.features.streaks.records import has_checked_in, streak_row_for_connection, to_streak
from unora.features.tiers.policy import TierPolicy, tier_policy
from unora.features.users.service import increment_active_connections, load_user_row, profile_summary
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import Connection, ConnectionStatus, ConnectionView, StreakSummary
from unora.models.streak import CHECK_IN_STATES, Streak, StreakState

logger = logging.getLogger("unora.connections")


def canonical_pair(first_user_id: str, second_user_id: str) -> Tuple[str, str]:
    if first_user_id < second_user_id:
        return first_user_id, second_user_id
    return second_user_id, first_user_id


def to_connection(row) -> Connection:
    return Connection(
        id=row.id,
        user_a_id=row.user_a_id,
        user_b_id=row.user_b_id,
        server_type=row.server_type,
        status=row.status,
        created_at=as_utc(row.created_at),
        terminated_at=as_utc(row.terminated_at),
    )


def load_connection_row(session: Session, connection_id: str, *, for_update: bool = False):
    stmt = select(connections).where(connections.c.id == connection_id, connections.c.deleted_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    row = session.execute(stmt).first()
    if not row:
        raise NotFoundError(f"Connection {connection_id} not found")
    return row


def load_participant_connection(session: Session, connection_id: str, user_id: str, *, for_update: bool = False) -> Connection:
    """Connection the user takes part in; anyone else gets NotFound."""
    connection = to_connection(load_connection_row(session, connection_id, for_update=for_update))
    if not connection.has_participant(user_id):
        raise NotFoundError(f"Connection {connection_id} not found")
    return connection


class ConnectionManager:
    def __init__(self, policy: TierPolicy = tier_policy):
        self.policy = policy

    def create_connection(
        self,
        session: Session,
        first_user_id: str,
        second_user_id: str,
        server_type: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Connection, Streak]:
        """
        Create an active connection and its day-1 streak inside `session`.

        Both users are locked in canonical order, so concurrent matches for
        the same user serialise on the capacity check. Nothing is logged here;
        the caller logs `connection.created` once its transaction commits.
        """
        if first_user_id == second_user_id:
            raise ValidationError("Cannot connect a user with themselves")
        ts = now or utc_now()
        user_a_id, user_b_id = canonical_pair(first_user_id, second_user_id)

        for user_id in (user_a_id, user_b_id):
            row = load_user_row(session, user_id, for_update=True)
            if not self.policy.can_connect(row.subscription_tier, row.active_connection_count):
                raise QuotaExceededError(f"User {user_id} has no free connection slots")

        existing = session.execute(
            select(connections.c.id).where(
                connections.c.user_a_id == user_a_id,
                connections.c.user_b_id == user_b_id,
                connections.c.server_type == server_type,
                connections.c.status == ConnectionStatus.ACTIVE.value,
                connections.c.deleted_at.is_(None),
            )
        ).first()
        if existing:
            raise ConflictError("Connection already exists for this pair")

        connection_id = str(uuid4())
        streak_id = str(uuid4())
        session.execute(
            insert(connections).values(
                id=connection_id,
                user_a_id=user_a_id,
                user_b_id=user_b_id,
                server_type=server_type,
                status=ConnectionStatus.ACTIVE.value,
                created_at=ts,
            )
        )
        session.execute(
            insert(streaks).values(
                id=streak_id,
                connection_id=connection_id,
                state=StreakState.ACTIVE.value,
                current_day=1,
                reset_count=0,
                created_at=ts,
                updated_at=ts,
            )
        )
        increment_active_connections(session, user_a_id)
        increment_active_connections(session, user_b_id)

        connection = Connection(
            id=connection_id,
            user_a_id=user_a_id,
            user_b_id=user_b_id,
            server_type=server_type,
            status=ConnectionStatus.ACTIVE,
            created_at=ts,
        )
        streak = Streak(
            id=streak_id,
            connection_id=connection_id,
            state=StreakState.ACTIVE,
            current_day=1,
            created_at=ts,
            updated_at=ts,
        )
        return connection, streak

    def terminate_connection(self, connection_id: str, acting_user_id: str, now: Optional[datetime] = None) -> Connection:
        ts = now or utc_now()
        with get_db_session() as session:
            connection = load_participant_connection(session, connection_id, acting_user_id, for_update=True)
            if connection.status == ConnectionStatus.TERMINATED:
                return connection
            self._terminate(session, connection.id, ts)
            terminated = to_connection(load_connection_row(session, connection.id))

        log_event(
            "info",
            "connection.terminated",
            request_id=None,
            user_id=acting_user_id,
            connection_id=connection_id,
            event_type="connection.terminated",
        )
        return terminated

    def terminate_between(self, session: Session, first_user_id: str, second_user_id: str, now: Optional[datetime] = None) -> List[str]:
        """Terminate every active connection of a pair, on any server. Returns their ids."""
        ts = now or utc_now()
        user_a_id, user_b_id = canonical_pair(first_user_id, second_user_id)
        ids = session.execute(
            select(connections.c.id).where(
                connections.c.user_a_id == user_a_id,
                connections.c.user_b_id == user_b_id,
                connections.c.status == ConnectionStatus.ACTIVE.value,
                connections.c.deleted_at.is_(None),
            ).with_for_update()
        ).scalars().all()
        for connection_id in ids:
            self._terminate(session, connection_id, ts)
        return list(ids)

    def _terminate(self, session: Session, connection_id: str, ts: datetime) -> None:
        session.execute(
            update(connections)
            .where(connections.c.id == connection_id, connections.c.status == ConnectionStatus.ACTIVE.value)
            .values(status=ConnectionStatus.TERMINATED.value, terminated_at=ts)
        )
        # Completed streaks keep their terminal state
        session.execute(
            update(streaks)
            .where(
                streaks.c.connection_id == connection_id,
                streaks.c.state.notin_([StreakState.COMPLETED.value, StreakState.TERMINATED.value]),
            )
            .values(state=StreakState.TERMINATED.value, updated_at=ts)
        )

    def list_connections(self, user_id: str, now: Optional[datetime] = None) -> List[ConnectionView]:
        """Active connections of the user, newest first."""
        ts = now or utc_now()
        with get_db_session() as session:
            rows = session.execute(
                select(connections)
                .where(
                    or_(connections.c.user_a_id == user_id, connections.c.user_b_id == user_id),
                    connections.c.status == ConnectionStatus.ACTIVE.value,
                    connections.c.deleted_at.is_(None),
                )
                .order_by(connections.c.created_at.desc(), connections.c.id)
            ).fetchall()
            return [self._view(session, to_connection(row), user_id, ts) for row in rows]

    def get_connection(self, user_id: str, connection_id: str, now: Optional[datetime] = None) -> ConnectionView:
        ts = now or utc_now()
        with get_db_session() as session:
            connection = load_participant_connection(session, connection_id, user_id)
            return self._view(session, connection, user_id, ts)

    def _view(self, session: Session, connection: Connection, user_id: str, ts: datetime) -> ConnectionView:
        today = utc_day(ts)
        streak_row = streak_row_for_connection(session, connection.id)
        summary = None
        if streak_row is not None:
            streak = to_streak(streak_row)
            needs = (
                connection.status == ConnectionStatus.ACTIVE
                and streak.state in CHECK_IN_STATES
                and not has_checked_in(session, streak.id, user_id, today)
            )
            summary = StreakSummary(
                id=streak.id,
                current_day=streak.current_day,
                state=streak.state.value,
                needs_check_in=needs,
            )
        return ConnectionView(
            connection=connection,
            partner=profile_summary(session, connection.partner_of(user_id), today),
            streak=summary,
        )
