"""
Interest ledger.

Interests are one-directional. When a sender expresses interest in someone
who already has a pending interest back (same server), the pair matches: the
connection and its streak are created, both interests flip to matched with
one shared matched_at, and the Total Wipe runs for both users, all in one
transaction.

Two requests that cross (A->B and B->A at the same moment) can each miss the
other's uncommitted row. The sender therefore re-checks for a reciprocal
interest in a fresh transaction after committing; the partial unique index on
active connections guarantees at most one of the racing settlements wins.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from unora.core.database import get_db_session, interests
from unora.core.errors import ConflictError, NotFoundError, QuotaExceededError, ValidationError
from unora.core.logging import log_event
from unora.features.discovery.cards import load_card
from unora.features.matching.connections import ConnectionManager, canonical_pair
from unora.features.tiers.policy import TierPolicy, tier_policy
from unora.features.users.service import load_user_row, profile_summary
from unora.models.common import as_utc, utc_now, utc_day
from unora.models.matching import Connection, ExpressInterestResult, Interest, InterestStatus, InterestView

logger = logging.getLogger("unora.interests")


def to_interest(row) -> Interest:
    return Interest(
        id=row.id,
        sender_user_id=row.sender_user_id,
        receiver_user_id=row.receiver_user_id,
        server_type=row.server_type,
        discovery_card_id=row.discovery_card_id,
        status=row.status,
        created_at=as_utc(row.created_at),
        matched_at=as_utc(row.matched_at),
    )


class InterestLedger:
    def __init__(self, connection_manager: Optional[ConnectionManager] = None, policy: TierPolicy = tier_policy):
        self.policy = policy
        self.connections = connection_manager or ConnectionManager(policy)

    def express_interest(self, sender_user_id: str, discovery_card_id: str, now: Optional[datetime] = None) -> ExpressInterestResult:
        ts = now or utc_now()
        interest_id = str(uuid4())
        connection: Optional[Connection] = None

        try:
            with get_db_session() as session:
                card = load_card(session, discovery_card_id, viewer_user_id=sender_user_id)
                receiver_user_id = card.candidate_user_id
                server_type = card.server_type.value
                if receiver_user_id == sender_user_id:
                    raise ValidationError("Cannot express interest in yourself")
                load_user_row(session, sender_user_id)
                load_user_row(session, receiver_user_id)

                if self._pending_between(session, sender_user_id, receiver_user_id, server_type) is not None:
                    raise ConflictError("Interest already pending for this user")

                reciprocal = self._pending_between(
                    session, receiver_user_id, sender_user_id, server_type, for_update=True
                )
                session.execute(
                    insert(interests).values(
                        id=interest_id,
                        sender_user_id=sender_user_id,
                        receiver_user_id=receiver_user_id,
                        server_type=server_type,
                        discovery_card_id=card.id,
                        status=InterestStatus.PENDING.value,
                        created_at=ts,
                    )
                )
                if reciprocal is not None:
                    connection = self._complete_match(
                        session, interest_id, reciprocal.id, sender_user_id, receiver_user_id, server_type, ts
                    )
        except IntegrityError:
            raise ConflictError("Interest conflicts with an existing interest or connection")

        if connection is None:
            connection = self._settle_crossed(interest_id, ts)

        with get_db_session() as session:
            interest = to_interest(self._load_interest_row(session, interest_id))

        if connection is not None:
            log_event(
                "info",
                "connection.created",
                request_id=None,
                connection_id=connection.id,
                event_type="connection.created",
                extra={"server_type": connection.server_type.value},
            )
        log_event(
            "info",
            "interest.matched" if connection else "interest.expressed",
            request_id=None,
            user_id=sender_user_id,
            connection_id=connection.id if connection else None,
            event_type="interest.matched" if connection else "interest.expressed",
            extra={"server_type": interest.server_type.value},
        )
        return ExpressInterestResult(interest=interest, matched=connection is not None, connection=connection)

    def sent_interests(self, user_id: str, now: Optional[datetime] = None) -> List[InterestView]:
        """Live interests the user sent, newest first."""
        today = utc_day(now or utc_now())
        with get_db_session() as session:
            rows = session.execute(
                select(interests)
                .where(interests.c.sender_user_id == user_id, interests.c.deleted_at.is_(None))
                .order_by(interests.c.created_at.desc(), interests.c.id)
            ).fetchall()
            return [
                InterestView(interest=to_interest(row), other_user=profile_summary(session, row.receiver_user_id, today))
                for row in rows
            ]

    def received_interests(self, user_id: str, now: Optional[datetime] = None) -> List[InterestView]:
        """Pending interests waiting on the user, newest first."""
        today = utc_day(now or utc_now())
        with get_db_session() as session:
            rows = session.execute(
                select(interests)
                .where(
                    interests.c.receiver_user_id == user_id,
                    interests.c.status == InterestStatus.PENDING.value,
                    interests.c.deleted_at.is_(None),
                )
                .order_by(interests.c.created_at.desc(), interests.c.id)
            ).fetchall()
            return [
                InterestView(interest=to_interest(row), other_user=profile_summary(session, row.sender_user_id, today))
                for row in rows
            ]

    def expire_interests_between(self, session: Session, first_user_id: str, second_user_id: str, now: Optional[datetime] = None) -> int:
        """Expire pending interests between two users in both directions."""
        ts = now or utc_now()
        result = session.execute(
            update(interests)
            .where(
                or_(
                    and_(interests.c.sender_user_id == first_user_id, interests.c.receiver_user_id == second_user_id),
                    and_(interests.c.sender_user_id == second_user_id, interests.c.receiver_user_id == first_user_id),
                ),
                interests.c.status == InterestStatus.PENDING.value,
                interests.c.deleted_at.is_(None),
            )
            .values(status=InterestStatus.EXPIRED.value, deleted_at=ts)
        )
        return result.rowcount or 0

    # Internal helpers -------------------------------------------------
    def _load_interest_row(self, session: Session, interest_id: str, *, for_update: bool = False):
        stmt = select(interests).where(interests.c.id == interest_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).first()
        if not row:
            raise NotFoundError(f"Interest {interest_id} not found")
        return row

    def _pending_between(self, session: Session, sender_user_id: str, receiver_user_id: str, server_type: str, *, for_update: bool = False):
        stmt = select(interests).where(
            interests.c.sender_user_id == sender_user_id,
            interests.c.receiver_user_id == receiver_user_id,
            interests.c.server_type == server_type,
            interests.c.status == InterestStatus.PENDING.value,
            interests.c.deleted_at.is_(None),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).first()

    def _complete_match(
        self,
        session: Session,
        interest_id: str,
        reciprocal_id: str,
        sender_user_id: str,
        receiver_user_id: str,
        server_type: str,
        ts: datetime,
    ) -> Connection:
        connection, _ = self.connections.create_connection(session, sender_user_id, receiver_user_id, server_type, ts)

        result = session.execute(
            update(interests)
            .where(
                interests.c.id.in_([interest_id, reciprocal_id]),
                interests.c.status == InterestStatus.PENDING.value,
                interests.c.deleted_at.is_(None),
            )
            .values(status=InterestStatus.MATCHED.value, matched_at=ts)
        )
        if result.rowcount != 2:
            raise ConflictError("Interest was resolved by a concurrent request")

        for user_id in canonical_pair(sender_user_id, receiver_user_id):
            self._total_wipe(session, user_id, ts)
        return connection

    def _total_wipe(self, session: Session, user_id: str, ts: datetime) -> int:
        """Wipe the user's pending outgoing interests once they have no free slot left."""
        row = load_user_row(session, user_id)
        if self.policy.can_connect(row.subscription_tier, row.active_connection_count):
            return 0
        result = session.execute(
            update(interests)
            .where(
                interests.c.sender_user_id == user_id,
                interests.c.status == InterestStatus.PENDING.value,
                interests.c.deleted_at.is_(None),
            )
            .values(status=InterestStatus.WIPED.value, deleted_at=ts)
        )
        wiped = result.rowcount or 0
        if wiped:
            log_event(
                "info",
                "interest.total_wipe",
                request_id=None,
                user_id=user_id,
                event_type="interest.total_wipe",
                extra={"wiped": wiped},
            )
        return wiped

    def _settle_crossed(self, interest_id: str, ts: datetime) -> Optional[Connection]:
        """Match a freshly committed interest against a reciprocal one that raced it."""
        try:
            with get_db_session() as session:
                own = self._load_interest_row(session, interest_id, for_update=True)
                if own.status != InterestStatus.PENDING.value or own.deleted_at is not None:
                    return None
                reciprocal = self._pending_between(
                    session, own.receiver_user_id, own.sender_user_id, own.server_type, for_update=True
                )
                if reciprocal is None:
                    return None
                return self._complete_match(
                    session, own.id, reciprocal.id, own.sender_user_id, own.receiver_user_id, own.server_type, ts
                )
        except (IntegrityError, ConflictError, QuotaExceededError) as exc:
            logger.warning(
                "interest.settle_skipped",
                extra={"event_type": "interest.settle_skipped", "error_code": type(exc).__name__},
            )
            return None
