"""
unora/api/reveals.py
Reveal API: milestones, per-connection reveals, unlock and viewed.
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends

from unora.api.deps import get_reveal_content_service, get_reveal_engine
from unora.core.auth import get_current_user_id
from unora.features.reveals.content import RevealContentService
from unora.features.reveals.service import RevealUnlockEngine
from unora.models.reveal import UnlockRevealRequest

router = APIRouter(tags=["reveals"])

UserId = Annotated[str, Depends(get_current_user_id)]


@router.get("/v1/reveal-milestones")
def list_milestones_endpoint(engine: Annotated[RevealUnlockEngine, Depends(get_reveal_engine)]):
    milestones = engine.milestones()
    return {"data": [m.model_dump(mode="json") for m in milestones], "count": len(milestones)}


@router.get("/v1/connections/{connection_id}/reveals")
def connection_reveals_endpoint(
    connection_id: str,
    user_id: UserId,
    engine: Annotated[RevealUnlockEngine, Depends(get_reveal_engine)],
):
    return {"data": engine.connection_reveals(user_id, connection_id).model_dump(mode="json")}


@router.post("/v1/connections/{connection_id}/reveals/{milestone_id}/unlock")
def unlock_reveal_endpoint(
    connection_id: str,
    milestone_id: str,
    request: UnlockRevealRequest,
    user_id: UserId,
    background_tasks: BackgroundTasks,
    engine: Annotated[RevealUnlockEngine, Depends(get_reveal_engine)],
    content: Annotated[RevealContentService, Depends(get_reveal_content_service)],
):
    """Unlock a reveal; content is generated after the response is sent."""
    result = engine.unlock(user_id, connection_id, milestone_id, request.use_credits)
    background_tasks.add_task(content.populate, result.reveal.id)
    return {"data": result.model_dump(mode="json")}


@router.post("/v1/reveals/{reveal_id}/viewed")
def mark_viewed_endpoint(
    reveal_id: str,
    user_id: UserId,
    engine: Annotated[RevealUnlockEngine, Depends(get_reveal_engine)],
):
    return {"data": engine.mark_viewed(reveal_id, user_id).model_dump(mode="json")}
