from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.routers.common import error_response

router = APIRouter(prefix="/usage", tags=["usage"])

MIN_DAYS = 1
MAX_DAYS = 90


@router.get("/stats")
async def usage_stats(
    tool_id: Optional[str] = Query(default=None, alias="toolId"),
    days: int = Query(default=7),
    container: ServiceContainer = Depends(get_container),
):
    days = max(MIN_DAYS, min(MAX_DAYS, days))
    stats = await container.ledger.stats(tool_id, days)
    return {
        **stats,
        "toolId": tool_id,
        "days": days,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/cost-summary")
async def cost_summary(
    tool_id: Optional[str] = Query(default=None, alias="toolId"),
    container: ServiceContainer = Depends(get_container),
):
    if not tool_id:
        return error_response(400, "Missing toolId parameter")
    return await container.ledger.cost_summary(tool_id)
