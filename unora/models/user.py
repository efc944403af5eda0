"""
unora/models/user.py
User, profile summary and credit ledger models.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionTier(str, Enum):
    FREE = "free"
    PLUS = "plus"
    PRO = "pro"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    first_name: Optional[str] = None
    city: Optional[str] = None
    birth_date: Optional[date] = None
    photo_url: Optional[str] = None
    subscription_tier: str = SubscriptionTier.FREE.value
    credit_balance: int = 0
    active_connection_count: int = 0
    free_recoveries_used: int = 0
    status: str = "active"
    created_at: datetime


class ProfileSummary(BaseModel):
    """Read-only partner card used in interest and connection payloads."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    first_name: Optional[str] = None
    age: Optional[int] = None
    city: Optional[str] = None
    photo_url: Optional[str] = None


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    STREAK_RECOVERY = "streak_recovery"
    EARLY_REVEAL = "early_reveal"
    REFERRAL_BONUS = "referral_bonus"
    WELCOME_BONUS = "welcome_bonus"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class CreditTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    transaction_type: TransactionType
    credit_amount: int = Field(description="Signed: negative for spends")
    balance_after: int
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
