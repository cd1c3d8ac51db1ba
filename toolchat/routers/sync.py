from typing import Optional

from fastapi import APIRouter, Depends, Query

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.logging_config import get_logger
from toolchat.routers.common import error_response
from toolchat.schemas.sync import SyncResponse

logger = get_logger("sync_router")

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/messages", response_model=SyncResponse)
async def get_synced_messages(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    container: ServiceContainer = Depends(get_container),
):
    if not session_id:
        return error_response(400, "Missing sessionId parameter")
    try:
        messages = await container.mirror.poll(session_id)
    except Exception as exc:
        logger.error("Sync poll failed", extra={"context": {"session_id": session_id, "error": str(exc)}})
        return error_response(500, "Internal server error")
    return SyncResponse(messages=messages, count=len(messages))
