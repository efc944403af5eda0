"""
Admin authentication for streak maintenance endpoints.

Admin calls present the shared secret in the X-Admin-Key header. The key is
compared in constant time and only a short hash of it is ever logged.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from unora.core.config import settings

logger = logging.getLogger("unora.admin")


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "admin_key:<hash>"
    auth_mechanism: str = "x_admin_key"


def verify_admin_key(request: Request, expected_key: Optional[str] = None) -> Optional[AdminActor]:
    """Return an AdminActor when X-Admin-Key matches the configured key."""
    expected = expected_key if expected_key is not None else settings.ADMIN_KEY
    if not expected:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin_key:{key_hash}")


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require admin authentication.

    503 when no admin key is configured at all, 401 for missing or wrong keys.
    """
    if not settings.ADMIN_KEY:
        raise HTTPException(status_code=503, detail="Admin authentication not configured")

    actor = verify_admin_key(request)
    if not actor:
        logger.warning("admin.unauthorized", extra={"path": request.url.path})
        raise HTTPException(status_code=401, detail="Unauthorized: invalid or missing admin key")
    return actor
