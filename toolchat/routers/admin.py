"""Admin endpoints for monitoring WhatsApp sessions and stored summaries."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.logging_config import get_logger
from toolchat.services.rate_limiter import client_identifier

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


async def _require_admin_password(request: Request, provided: Optional[str], container: ServiceContainer) -> None:
    decision = await container.rate_limits.admin.check(client_identifier(request))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many admin requests",
            headers={"Retry-After": str(decision.retry_after)},
        )
    expected = container.settings.admin_password
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_PASSWORD not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid admin password")


@router.get("/whatsapp-sessions")
async def list_whatsapp_sessions(
    request: Request,
    x_admin_password: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    await _require_admin_password(request, x_admin_password, container)
    sessions = await container.sessions.list_sessions()
    return {"sessions": sessions, "count": len(sessions)}


@router.delete("/whatsapp-sessions/{phone_number}")
async def delete_whatsapp_session(
    phone_number: str,
    request: Request,
    x_admin_password: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    await _require_admin_password(request, x_admin_password, container)
    if not await container.sessions.clear(phone_number):
        raise HTTPException(status_code=404, detail="Session not found")
    logger.info("Admin cleared WhatsApp session", extra={"context": {"phone": phone_number}})
    return {"success": True}


@router.post("/whatsapp-sessions/cleanup")
async def cleanup_whatsapp_sessions(
    request: Request,
    days: Optional[int] = Query(default=None, ge=1),
    x_admin_password: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    await _require_admin_password(request, x_admin_password, container)
    cleaned = await container.sessions.cleanup_inactive(days)
    return {"cleaned": cleaned}


@router.get("/summaries")
async def list_summaries(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    x_admin_password: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    await _require_admin_password(request, x_admin_password, container)
    summaries = await container.summaries.fetch_summaries(limit)
    return {"summaries": summaries, "count": len(summaries)}
