from toolchat.logging_config import get_logger
from toolchat.schemas.chat import ChatRequest, ChatResponse, ChatUsage
from toolchat.services.link_service import LinkService
from toolchat.services.llm_gateway import LLMGateway
from toolchat.services.mirror_service import CrossChannelMirror
from toolchat.services.tool_catalog import ToolCatalog, ToolNotFoundError
from toolchat.services.usage_service import UsageLedger

logger = get_logger("chat")


class WebChatHandler:
    def __init__(
        self,
        catalog: ToolCatalog,
        gateway: LLMGateway,
        ledger: UsageLedger,
        links: LinkService,
        mirror: CrossChannelMirror,
    ):
        self.catalog = catalog
        self.gateway = gateway
        self.ledger = ledger
        self.links = links
        self.mirror = mirror

    async def handle(self, request: ChatRequest) -> ChatResponse:
        """Answer a web chat turn. CostCeilingExceededError propagates to the router."""
        tool = await self.catalog.get_tool(request.tool_id)
        if tool is None or not tool.is_active:
            raise ToolNotFoundError(request.tool_id)

        messages = [message.model_dump() for message in request.messages]
        result = await self.gateway.chat(tool, messages)

        last_user = next((m.content for m in reversed(request.messages) if m.role == "user"), "")
        await self.ledger.record(
            tool.id,
            result.model,
            prompt_text=last_user,
            response_text=result.content,
            user_id=request.user_id or request.session_id,
            source="web",
            prompt_tokens=result.prompt_tokens,
            response_tokens=result.response_tokens,
        )

        if request.session_id:
            link = await self.links.get_link_for_web(request.session_id)
            if link is not None:
                logger.info(f"Mirroring web exchange to {link.whatsapp_session_id}")
                await self.mirror.mirror_to_whatsapp(link, last_user, result.content, tool=tool.id)

        return ChatResponse(
            content=result.content,
            model=result.model,
            tool_id=tool.id,
            usage=ChatUsage(prompt_tokens=result.prompt_tokens, response_tokens=result.response_tokens),
        )
