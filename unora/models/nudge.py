"""
unora/models/nudge.py
Once-a-day reminders between streak partners.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

NUDGE_MESSAGE_MAX_LENGTH = 200


class NudgeStatus(str, Enum):
    SENT = "sent"
    SEEN = "seen"
    RESPONDED = "responded"
    EXPIRED = "expired"


class Nudge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    streak_id: str
    sender_user_id: str
    receiver_user_id: str
    day_number: int
    nudge_date: date
    status: NudgeStatus
    message: Optional[str] = None
    created_at: datetime
    seen_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


class SendNudgeRequest(BaseModel):
    message: Optional[str] = Field(default=None, max_length=NUDGE_MESSAGE_MAX_LENGTH)
