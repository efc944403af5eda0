"""Discovery card lookups. Cards are dealt by the discovery feed; matching only reads them."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import select, insert

from unora.core.database import get_db_session, discovery_cards
from unora.core.errors import NotFoundError, ValidationError
from unora.models.common import as_utc, utc_now
from unora.models.matching import DiscoveryCard, ServerType


def _to_card(row) -> DiscoveryCard:
    return DiscoveryCard(
        id=row.id,
        owner_user_id=row.owner_user_id,
        candidate_user_id=row.candidate_user_id,
        server_type=row.server_type,
        created_at=as_utc(row.created_at),
    )


def deal_card(
    owner_user_id: Optional[str],
    candidate_user_id: str,
    server_type: str = ServerType.PARTNER.value,
    now: Optional[datetime] = None,
) -> DiscoveryCard:
    """Record a card shown to `owner_user_id` for `candidate_user_id`."""
    try:
        server = ServerType(server_type)
    except ValueError:
        raise ValidationError(f"Unknown server type: {server_type}")

    card_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(discovery_cards).values(
                id=card_id,
                owner_user_id=owner_user_id,
                candidate_user_id=candidate_user_id,
                server_type=server.value,
                created_at=now or utc_now(),
            )
        )
        return load_card(session, card_id)


def load_card(session, card_id: str, viewer_user_id: Optional[str] = None) -> DiscoveryCard:
    """Live card by id; cards dealt to someone else look missing to the viewer."""
    row = session.execute(
        select(discovery_cards).where(
            discovery_cards.c.id == card_id,
            discovery_cards.c.deleted_at.is_(None),
        )
    ).first()
    if not row:
        raise NotFoundError(f"Discovery card {card_id} not found")
    if viewer_user_id and row.owner_user_id and row.owner_user_id != viewer_user_id:
        raise NotFoundError(f"Discovery card {card_id} not found")
    return _to_card(row)
