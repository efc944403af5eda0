"""
Credit ledger.

Balance changes go through one guarded UPDATE on users.credit_balance followed
by an append-only credit_transactions row, both in the caller's transaction.
A deduction that would overdraw matches no row and raises
InsufficientFundsError, so concurrent spends can never push a balance below
zero.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from unora.core.database import get_db_session, users, credit_transactions
from unora.core.errors import InsufficientFundsError, NotFoundError, ValidationError
from unora.models.common import as_utc, utc_now
from unora.models.user import CreditTransaction, TransactionType

logger = logging.getLogger("unora.credits")


def _to_transaction(row) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,
        user_id=row.user_id,
        transaction_type=row.transaction_type,
        credit_amount=row.credit_amount,
        balance_after=row.balance_after,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        description=row.description,
        created_at=as_utc(row.created_at),
    )


def get_balance(session: Session, user_id: str) -> int:
    balance = session.execute(
        select(users.c.credit_balance).where(users.c.user_id == user_id, users.c.deleted_at.is_(None))
    ).scalar()
    if balance is None:
        raise NotFoundError(f"User {user_id} not found")
    return int(balance)


def _append(
    session: Session,
    *,
    user_id: str,
    transaction_type: TransactionType,
    signed_amount: int,
    reference_type: Optional[str],
    reference_id: Optional[str],
    description: Optional[str],
    now: datetime,
) -> CreditTransaction:
    balance_after = get_balance(session, user_id)
    tx_id = str(uuid4())
    session.execute(
        insert(credit_transactions).values(
            id=tx_id,
            user_id=user_id,
            transaction_type=transaction_type.value,
            credit_amount=signed_amount,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            created_at=now,
        )
    )
    return CreditTransaction(
        id=tx_id,
        user_id=user_id,
        transaction_type=transaction_type,
        credit_amount=signed_amount,
        balance_after=balance_after,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        created_at=now,
    )


def deduct_credits(
    session: Session,
    user_id: str,
    amount: int,
    transaction_type: TransactionType,
    *,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    """Spend `amount` credits; raises InsufficientFundsError without touching the balance."""
    if amount <= 0:
        raise ValidationError("amount must be positive")
    ts = now or utc_now()

    result = session.execute(
        update(users)
        .where(
            users.c.user_id == user_id,
            users.c.deleted_at.is_(None),
            users.c.credit_balance >= amount,
        )
        .values(credit_balance=users.c.credit_balance - amount)
    )
    if result.rowcount == 0:
        balance = get_balance(session, user_id)
        raise InsufficientFundsError(f"Insufficient credits: need {amount}, have {balance}")

    tx = _append(
        session,
        user_id=user_id,
        transaction_type=transaction_type,
        signed_amount=-amount,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        now=ts,
    )
    logger.info(
        "credits.deducted",
        extra={"user_id": user_id, "event_type": transaction_type.value},
    )
    return tx


def add_credits(
    session: Session,
    user_id: str,
    amount: int,
    transaction_type: TransactionType,
    *,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CreditTransaction:
    if amount <= 0:
        raise ValidationError("amount must be positive")
    ts = now or utc_now()

    result = session.execute(
        update(users)
        .where(users.c.user_id == user_id, users.c.deleted_at.is_(None))
        .values(credit_balance=users.c.credit_balance + amount)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"User {user_id} not found")

    return _append(
        session,
        user_id=user_id,
        transaction_type=transaction_type,
        signed_amount=amount,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        now=ts,
    )


def grant_credits(
    user_id: str,
    amount: int,
    transaction_type: TransactionType = TransactionType.ADMIN_ADJUSTMENT,
    description: Optional[str] = None,
) -> CreditTransaction:
    """Standalone credit grant in its own transaction (purchases, bonuses, refunds)."""
    with get_db_session() as session:
        return add_credits(session, user_id, amount, transaction_type, description=description)


def list_transactions(user_id: str, limit: int = 50) -> List[CreditTransaction]:
    with get_db_session() as session:
        rows = session.execute(
            select(credit_transactions)
            .where(credit_transactions.c.user_id == user_id)
            .order_by(credit_transactions.c.created_at.desc(), credit_transactions.c.id)
            .limit(limit)
        ).fetchall()
        return [_to_transaction(row) for row in rows]
