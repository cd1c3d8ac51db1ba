from fastapi import APIRouter, Depends, Request

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.routers.common import check_rate_limit, error_response
from toolchat.schemas.link import LinkRequest, LinkRequestResponse, LinkVerifyRequest, LinkVerifyResponse
from toolchat.services.link_service import LinkError
from toolchat.services.rate_limiter import client_identifier

router = APIRouter(prefix="/link", tags=["link"])


@router.post("/request", response_model=LinkRequestResponse)
async def request_link(payload: LinkRequest, request: Request, container: ServiceContainer = Depends(get_container)):
    limited = await check_rate_limit(container.rate_limits.link_request, client_identifier(request, payload.session_id))
    if limited is not None:
        return limited

    try:
        await container.links.request_link(payload.phone_number, payload.session_id, payload.tool_id)
    except LinkError as e:
        return error_response(e.status_code, e.message)
    return LinkRequestResponse(success=True, message="Verification code sent")


@router.post("/verify", response_model=LinkVerifyResponse)
async def verify_link(payload: LinkVerifyRequest, request: Request, container: ServiceContainer = Depends(get_container)):
    limited = await check_rate_limit(container.rate_limits.link_verify, client_identifier(request, payload.session_id))
    if limited is not None:
        return limited

    try:
        link = await container.links.verify(payload.phone_number, payload.code, payload.session_id)
    except LinkError as e:
        return error_response(e.status_code, e.message)
    return LinkVerifyResponse(success=True, linked_session_id=link.whatsapp_session_id, phone_number=link.phone_number)
