"""
unora/api/connections.py
Connection API: list, fetch, terminate.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from unora.api.deps import get_connection_manager
from unora.core.auth import get_current_user_id
from unora.features.matching.connections import ConnectionManager

router = APIRouter(prefix="/v1/connections", tags=["connections"])


@router.get("")
def list_connections_endpoint(
    user_id: Annotated[str, Depends(get_current_user_id)],
    manager: Annotated[ConnectionManager, Depends(get_connection_manager)],
):
    views = manager.list_connections(user_id)
    return {"data": [view.model_dump(mode="json") for view in views], "count": len(views)}


@router.get("/{connection_id}")
def get_connection_endpoint(
    connection_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    manager: Annotated[ConnectionManager, Depends(get_connection_manager)],
):
    return {"data": manager.get_connection(user_id, connection_id).model_dump(mode="json")}


@router.delete("/{connection_id}")
def terminate_connection_endpoint(
    connection_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    manager: Annotated[ConnectionManager, Depends(get_connection_manager)],
):
    """Terminate a connection. Slots are not returned to either user."""
    return {"data": manager.terminate_connection(connection_id, user_id).model_dump(mode="json")}
