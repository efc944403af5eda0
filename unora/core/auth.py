"""
Caller identity for the unora API.

Authentication happens upstream at the gateway, which forwards the verified
user id in the X-User-Id header. This module only reads it.
"""
from typing import Optional

from fastapi import Header, HTTPException


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id", description="Authenticated user id set by the gateway"),
) -> str:
    """Return the caller's user id or raise 401 when the header is missing."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id
