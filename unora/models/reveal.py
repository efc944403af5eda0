"""
unora/models/reveal.py
Milestone-gated reveals: unlocked by streak progress (earned) or credits (purchased).
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RevealType(str, Enum):
    PERSONALITY = "personality"
    VALUES = "values"
    LIFESTYLE = "lifestyle"


class UnlockMethod(str, Enum):
    EARNED = "earned"
    PURCHASED = "purchased"
    GIFTED = "gifted"


class RevealStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    VIEWED = "viewed"


class RevealMilestone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    reveal_number: int
    day_required: int
    reveal_type: RevealType
    title: str
    description: Optional[str] = None
    icon_name: Optional[str] = None
    credit_cost: int
    is_active: bool = True


class GeneratedContent(BaseModel):
    """Output of a content generator for one reveal."""

    model_config = ConfigDict(frozen=True)

    summary: str
    insight: str
    starters: List[str] = []
    dimension_scores: Dict[str, float] = {}


class RevealContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    ai_summary: str
    compatibility_insight: str
    conversation_starters: List[str] = []
    dimension_scores: Dict[str, float] = {}


class Reveal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    connection_id: str
    milestone_id: str
    unlock_method: Optional[UnlockMethod] = None
    status: RevealStatus
    created_at: datetime
    unlocked_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None


class RevealItem(BaseModel):
    """One milestone slot in a connection's reveal list."""

    model_config = ConfigDict(frozen=True)

    milestone: RevealMilestone
    reveal_id: Optional[str] = None
    status: RevealStatus = RevealStatus.LOCKED
    can_unlock: bool = False
    unlock_method: Optional[UnlockMethod] = None
    unlocked_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    content: Optional[RevealContent] = None


class ConnectionReveals(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection_id: str
    current_day: int
    streak_active: bool
    reveals: List[RevealItem] = []
    next_reveal_day: Optional[int] = None


class UnlockRevealResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    reveal: Reveal
    credits_used: int = 0
    remaining_credits: int


class UnlockRevealRequest(BaseModel):
    use_credits: bool = False


class MarkViewedResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    reveal: Reveal
    changed: bool = Field(description="False when the reveal was already viewed")
