"""
Matching cleanup after safety actions.

Block and report records are kept by the safety feature; once one is filed
the pair must stop matching: active connections between them end and pending
interests in either direction expire, in one transaction.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from unora.core.database import get_db_session
from unora.core.errors import ValidationError
from unora.features.matching.connections import ConnectionManager
from unora.features.matching.interests import InterestLedger
from unora.models.common import utc_now

logger = logging.getLogger("unora.safety")


class SafetyHooks:
    def __init__(self, ledger: Optional[InterestLedger] = None, connection_manager: Optional[ConnectionManager] = None):
        self.connections = connection_manager or ConnectionManager()
        self.ledger = ledger or InterestLedger(self.connections)

    def on_user_blocked(self, blocker_user_id: str, blocked_user_id: str, now: Optional[datetime] = None) -> Dict[str, object]:
        if blocker_user_id == blocked_user_id:
            raise ValidationError("Cannot block yourself")
        ts = now or utc_now()
        with get_db_session() as session:
            terminated = self.connections.terminate_between(session, blocker_user_id, blocked_user_id, ts)
            expired = self.ledger.expire_interests_between(session, blocker_user_id, blocked_user_id, ts)

        logger.info(
            "safety.block_cleanup",
            extra={"user_id": blocker_user_id, "event_type": "safety.block_cleanup"},
        )
        return {"terminated_connections": terminated, "expired_interests": expired}

    # Reports trigger the same cleanup as blocks
    on_user_reported = on_user_blocked
