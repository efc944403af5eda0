"""
unora/api/admin_streaks.py
Admin maintenance: streak reset/adjust, daily sweep, safety cleanup.
All routes require X-Admin-Key.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from unora.api.deps import get_safety_hooks, get_state_machine
from unora.core.admin_auth import AdminActor, require_admin
from unora.features.safety.service import SafetyHooks
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.streaks.sweep import close_day
from unora.models.streak import AdjustStreakRequest, SweepRequest

logger = logging.getLogger("unora.admin")

router = APIRouter(prefix="/v1/admin", tags=["admin"])

Admin = Annotated[AdminActor, Depends(require_admin)]


class BlockCleanupRequest(BaseModel):
    blocker_user_id: str
    blocked_user_id: str


@router.post("/streaks/{streak_id}/reset")
def reset_streak_endpoint(
    streak_id: str,
    actor: Admin,
    machine: Annotated[StreakStateMachine, Depends(get_state_machine)],
):
    streak = machine.reset(streak_id)
    logger.info("admin.streak_reset", extra={"streak_id": streak_id, "event_type": "admin.action", "actor": actor.actor_id})
    return {"data": streak.model_dump(mode="json")}


@router.post("/streaks/{streak_id}/adjust")
def adjust_streak_endpoint(
    streak_id: str,
    request: AdjustStreakRequest,
    actor: Admin,
    machine: Annotated[StreakStateMachine, Depends(get_state_machine)],
):
    streak = machine.adjust_day(streak_id, request.day)
    logger.info("admin.streak_adjust", extra={"streak_id": streak_id, "event_type": "admin.action", "actor": actor.actor_id})
    return {"data": streak.model_dump(mode="json")}


@router.post("/streaks/sweep")
def sweep_streaks_endpoint(
    actor: Admin,
    machine: Annotated[StreakStateMachine, Depends(get_state_machine)],
    request: Optional[SweepRequest] = None,
):
    """Close a UTC day now instead of waiting for the scheduled worker."""
    return {"data": close_day(request.day if request else None, state_machine=machine)}


@router.post("/safety/block-cleanup")
def block_cleanup_endpoint(
    request: BlockCleanupRequest,
    actor: Admin,
    hooks: Annotated[SafetyHooks, Depends(get_safety_hooks)],
):
    return {"data": hooks.on_user_blocked(request.blocker_user_id, request.blocked_user_id)}
