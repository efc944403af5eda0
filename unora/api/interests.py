"""
unora/api/interests.py
Interest API: express interest on a discovery card, list sent/received.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from unora.api.deps import get_interest_ledger
from unora.core.auth import get_current_user_id
from unora.features.matching.interests import InterestLedger
from unora.models.matching import ExpressInterestRequest

router = APIRouter(prefix="/v1/interests", tags=["interests"])


@router.post("", status_code=201)
def express_interest_endpoint(
    request: ExpressInterestRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    ledger: Annotated[InterestLedger, Depends(get_interest_ledger)],
):
    """Express interest; returns the connection too when it completes a mutual match."""
    result = ledger.express_interest(user_id, request.discovery_card_id)
    return {"data": result.model_dump(mode="json")}


@router.get("/sent")
def sent_interests_endpoint(
    user_id: Annotated[str, Depends(get_current_user_id)],
    ledger: Annotated[InterestLedger, Depends(get_interest_ledger)],
):
    items = ledger.sent_interests(user_id)
    return {"data": [item.model_dump(mode="json") for item in items], "count": len(items)}


@router.get("/received")
def received_interests_endpoint(
    user_id: Annotated[str, Depends(get_current_user_id)],
    ledger: Annotated[InterestLedger, Depends(get_interest_ledger)],
):
    items = ledger.received_interests(user_id)
    return {"data": [item.model_dump(mode="json") for item in items], "count": len(items)}
