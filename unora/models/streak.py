"""
unora/models/streak.py
Connection streak models. Day-level, UTC only.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


MAX_STREAK_DAY = 15
CHECK_IN_ACTIVITY_MAX_LENGTH = 200


class StreakState(str, Enum):
    """active -> at_risk -> payment_window -> reset | terminated; active -> completed"""

    ACTIVE = "active"
    AT_RISK = "at_risk"
    PAYMENT_WINDOW = "payment_window"
    RESET = "reset"
    COMPLETED = "completed"
    TERMINATED = "terminated"


CHECK_IN_STATES = frozenset({StreakState.ACTIVE, StreakState.AT_RISK, StreakState.RESET})
RECOVERABLE_STATES = frozenset({StreakState.AT_RISK, StreakState.PAYMENT_WINDOW})
TERMINAL_STATES = frozenset({StreakState.COMPLETED, StreakState.TERMINATED})


class CheckInType(str, Enum):
    MANUAL = "manual"
    NUDGE_RESPONSE = "nudge_response"
    AUTO = "auto"


class Streak(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    connection_id: str
    state: StreakState
    current_day: int = Field(ge=1, le=MAX_STREAK_DAY)
    reset_count: int = 0
    breaker_user_id: Optional[str] = None
    recovery_deadline_at: Optional[datetime] = None
    recovery_payment_id: Optional[str] = None
    health_score: Optional[float] = None
    last_missed_day: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class CheckIn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    streak_id: str
    user_id: str
    day_number: int
    check_in_date: date
    check_in_type: CheckInType
    event_data: Optional[Dict[str, Any]] = None
    created_at: datetime


class CheckInResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_in: CheckIn
    streak: Streak
    advanced: bool = False
    completed: bool = False


class RecoverStreakResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    streak: Streak
    credits_used: int = 0
    used_free_recovery: bool = False
    remaining_credits: int


class RecoveryOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    streak_id: str
    can_recover: bool
    recovery_deadline: Optional[datetime] = None
    credit_cost: int
    user_credits: int
    free_recovery_available: bool


class StreakView(BaseModel):
    """Streak as seen by one participant of its connection."""

    model_config = ConfigDict(frozen=True)

    streak: Streak
    my_check_in_today: bool
    partner_check_in_today: bool
    check_ins: List[CheckIn] = []


class TodayStreakItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    streak_id: str
    connection_id: str
    partner_user_id: str
    current_day: int
    state: StreakState
    needs_check_in: bool
    partner_checked_in: bool


class TodayStreaks(BaseModel):
    model_config = ConfigDict(frozen=True)

    streaks: List[TodayStreakItem] = []
    pending_count: int = 0
    completed_count: int = 0


class CheckInRequest(BaseModel):
    activity: Optional[str] = Field(default=None, max_length=CHECK_IN_ACTIVITY_MAX_LENGTH)


class RecoverStreakRequest(BaseModel):
    pay_with_credits: bool = True


class AdjustStreakRequest(BaseModel):
    day: int = Field(ge=1, le=MAX_STREAK_DAY)


class SweepRequest(BaseModel):
    day: Optional[date] = Field(default=None, description="UTC day to close; defaults to yesterday")
