"""
unora/api/streaks.py
Streak API: check-ins, nudges, today's streaks and recovery.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from unora.api.deps import get_nudge_tracker, get_state_machine, get_streak_service, get_tier_policy
from unora.core.auth import get_current_user_id
from unora.core.errors import QuotaExceededError
from unora.features.nudges.service import NudgeTracker
from unora.features.streaks.service import StreakService
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.tiers.policy import TierPolicy
from unora.features.users.service import get_user
from unora.models.nudge import SendNudgeRequest
from unora.models.streak import CheckInRequest, RecoverStreakRequest

router = APIRouter(tags=["streaks"])

UserId = Annotated[str, Depends(get_current_user_id)]


@router.get("/v1/connections/{connection_id}/streak")
def get_streak_endpoint(
    connection_id: str,
    user_id: UserId,
    service: Annotated[StreakService, Depends(get_streak_service)],
):
    return {"data": service.streak_for_connection(user_id, connection_id).model_dump(mode="json")}


@router.post("/v1/connections/{connection_id}/streak/check-in")
def check_in_endpoint(
    connection_id: str,
    user_id: UserId,
    service: Annotated[StreakService, Depends(get_streak_service)],
    machine: Annotated[StreakStateMachine, Depends(get_state_machine)],
    request: Optional[CheckInRequest] = None,
):
    """Record today's check-in; the day advances once both partners have checked in."""
    streak_id = service.streak_id_for_connection(user_id, connection_id)
    activity = request.activity if request else None
    return {"data": machine.check_in(streak_id, user_id, activity).model_dump(mode="json")}


@router.post("/v1/connections/{connection_id}/nudge", status_code=201)
def send_nudge_endpoint(
    connection_id: str,
    user_id: UserId,
    service: Annotated[StreakService, Depends(get_streak_service)],
    tracker: Annotated[NudgeTracker, Depends(get_nudge_tracker)],
    policy: Annotated[TierPolicy, Depends(get_tier_policy)],
    request: Optional[SendNudgeRequest] = None,
):
    streak_id = service.streak_id_for_connection(user_id, connection_id)
    user = get_user(user_id)
    if not policy.can_send_nudge(user.subscription_tier, tracker.nudges_sent_today(user_id)):
        raise QuotaExceededError("Daily nudge limit reached for your plan")
    nudge = tracker.send_nudge(streak_id, user_id, request.message if request else None)
    return {"data": nudge.model_dump(mode="json")}


@router.get("/v1/nudges/received")
def received_nudges_endpoint(
    user_id: UserId,
    tracker: Annotated[NudgeTracker, Depends(get_nudge_tracker)],
):
    items = tracker.received_nudges(user_id)
    return {"data": [item.model_dump(mode="json") for item in items], "count": len(items)}


@router.post("/v1/nudges/{nudge_id}/seen")
def mark_nudge_seen_endpoint(
    nudge_id: str,
    user_id: UserId,
    tracker: Annotated[NudgeTracker, Depends(get_nudge_tracker)],
):
    return {"data": tracker.mark_seen(nudge_id, user_id).model_dump(mode="json")}


@router.get("/v1/streaks/today")
def today_streaks_endpoint(
    user_id: UserId,
    service: Annotated[StreakService, Depends(get_streak_service)],
):
    return {"data": service.today_streaks(user_id).model_dump(mode="json")}


@router.get("/v1/streaks/{streak_id}/recovery-options")
def recovery_options_endpoint(
    streak_id: str,
    user_id: UserId,
    service: Annotated[StreakService, Depends(get_streak_service)],
):
    return {"data": service.recovery_options(user_id, streak_id).model_dump(mode="json")}


@router.post("/v1/streaks/{streak_id}/recover")
def recover_streak_endpoint(
    streak_id: str,
    request: RecoverStreakRequest,
    user_id: UserId,
    machine: Annotated[StreakStateMachine, Depends(get_state_machine)],
):
    result = machine.recover(streak_id, user_id, request.pay_with_credits)
    return {"data": result.model_dump(mode="json")}
