from fastapi import APIRouter, Depends, Request

from toolchat.dependencies import ServiceContainer, get_container
from toolchat.logging_config import get_logger
from toolchat.routers.common import check_rate_limit, error_response
from toolchat.schemas.chat import ChatRequest, ChatResponse
from toolchat.services.cost_governor import CostCeilingExceededError
from toolchat.services.llm import LLMProviderError
from toolchat.services.rate_limiter import client_identifier
from toolchat.services.tool_catalog import ToolNotFoundError

logger = get_logger("chat_router")

router = APIRouter(tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, request: Request, container: ServiceContainer = Depends(get_container)):
    limited = await check_rate_limit(container.rate_limits.chat, client_identifier(request, payload.session_id))
    if limited is not None:
        return limited

    try:
        return await container.chat.handle(payload)
    except ToolNotFoundError as e:
        return error_response(404, e.message)
    except CostCeilingExceededError as e:
        return error_response(
            503,
            f"This tool is unavailable today: {e.message}",
            toolId=e.tool_id,
            costCeiling=e.ceiling,
        )
    except LLMProviderError as e:
        logger.error("Chat completion failed", extra={"context": {"tool_id": payload.tool_id, "error": e.message}})
        return error_response(502, "AI provider request failed")
