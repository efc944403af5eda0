"""
Reveal milestone master data.

Milestones are seeded idempotently by reveal_number; edits made in the
database after seeding are left alone.
"""

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert
from sqlalchemy.orm import Session

from unora.core.database import get_db_session, reveal_milestones
from unora.core.errors import NotFoundError
from unora.models.common import utc_now
from unora.models.reveal import RevealMilestone, RevealType


DEFAULT_MILESTONES = [
    {
        "reveal_number": 1,
        "day_required": 5,
        "reveal_type": RevealType.PERSONALITY.value,
        "title": "Personality",
        "description": "How each of you shows up: energy, humour and the way you handle plans.",
        "icon_name": "sparkles",
        "credit_cost": 50,
    },
    {
        "reveal_number": 2,
        "day_required": 10,
        "reveal_type": RevealType.VALUES.value,
        "title": "Values",
        "description": "What matters most to both of you and where you line up.",
        "icon_name": "heart",
        "credit_cost": 75,
    },
    {
        "reveal_number": 3,
        "day_required": 15,
        "reveal_type": RevealType.LIFESTYLE.value,
        "title": "Lifestyle",
        "description": "Daily rhythms, weekends and the life you each want to build.",
        "icon_name": "compass",
        "credit_cost": 100,
    },
]


def to_milestone(row) -> RevealMilestone:
    return RevealMilestone(
        id=row.id,
        reveal_number=row.reveal_number,
        day_required=row.day_required,
        reveal_type=row.reveal_type,
        title=row.title,
        description=row.description,
        icon_name=row.icon_name,
        credit_cost=row.credit_cost,
        is_active=bool(row.is_active),
    )


def seed_milestones(now: Optional[datetime] = None) -> int:
    """Insert any default milestone missing by reveal_number. Returns rows inserted."""
    ts = now or utc_now()
    inserted = 0
    with get_db_session() as session:
        existing = set(session.execute(select(reveal_milestones.c.reveal_number)).scalars().all())
        for seed in DEFAULT_MILESTONES:
            if seed["reveal_number"] in existing:
                continue
            session.execute(
                insert(reveal_milestones).values(id=str(uuid4()), is_active=True, created_at=ts, **seed)
            )
            inserted += 1
    return inserted


def active_milestones(session: Session) -> List[RevealMilestone]:
    rows = session.execute(
        select(reveal_milestones)
        .where(reveal_milestones.c.is_active.is_(True))
        .order_by(reveal_milestones.c.reveal_number)
    ).fetchall()
    return [to_milestone(row) for row in rows]


def list_milestones() -> List[RevealMilestone]:
    with get_db_session() as session:
        return active_milestones(session)


def load_milestone(session: Session, milestone_id: str, *, include_inactive: bool = False) -> RevealMilestone:
    row = session.execute(select(reveal_milestones).where(reveal_milestones.c.id == milestone_id)).first()
    if not row or (not row.is_active and not include_inactive):
        raise NotFoundError(f"Reveal milestone {milestone_id} not found")
    return to_milestone(row)
