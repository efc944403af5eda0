"""
unora/models/matching.py
Interest and connection models: one-directional interests become a symmetric
connection once both sides express interest in the same server.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from unora.models.user import ProfileSummary


class ServerType(str, Enum):
    PARTNER = "partner"
    FRIEND = "friend"
    GROWTH = "growth"


class InterestStatus(str, Enum):
    """Interest lifecycle: pending -> matched OR wiped/expired"""

    PENDING = "pending"
    MATCHED = "matched"
    EXPIRED = "expired"
    WIPED = "wiped"


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


class DiscoveryCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    owner_user_id: Optional[str] = Field(default=None, description="Viewer the card was dealt to")
    candidate_user_id: str
    server_type: ServerType
    created_at: datetime


class Interest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sender_user_id: str
    receiver_user_id: str
    server_type: ServerType
    discovery_card_id: Optional[str] = None
    status: InterestStatus
    created_at: datetime
    matched_at: Optional[datetime] = None


class InterestView(BaseModel):
    """Interest plus a profile summary of the other user."""

    model_config = ConfigDict(frozen=True)

    interest: Interest
    other_user: ProfileSummary


class Connection(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_a_id: str
    user_b_id: str
    server_type: ServerType
    status: ConnectionStatus
    created_at: datetime
    terminated_at: Optional[datetime] = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)

    def partner_of(self, user_id: str) -> str:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id


class StreakSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    current_day: int
    state: str
    needs_check_in: bool


class ConnectionView(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection: Connection
    partner: ProfileSummary
    streak: Optional[StreakSummary] = None


class ExpressInterestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    interest: Interest
    matched: bool = False
    connection: Optional[Connection] = None


class ExpressInterestRequest(BaseModel):
    discovery_card_id: str = Field(min_length=1)
