"""Inbound WhatsApp message handling.

Flow per message: load or create the session, resolve a pending switch if one is
parked, otherwise handle commands or run tool inference, answer through the LLM
gateway, record usage, mirror to a linked web session, deliver the reply and
persist the session.
"""

import time
from dataclasses import dataclass
from typing import List

from toolchat.config import Settings
from toolchat.logging_config import LoggerAdapter, bind_logger, get_logger
from toolchat.schemas.session import WhatsAppSession
from toolchat.schemas.tool import Tool
from toolchat.services import switch_state
from toolchat.services.cost_governor import CostCeilingExceededError
from toolchat.services.link_service import LinkService
from toolchat.services.llm_gateway import LLMGateway
from toolchat.services.mirror_service import CrossChannelMirror
from toolchat.services.phone import normalize_phone
from toolchat.services.session_service import WhatsAppSessionStore
from toolchat.services.tool_catalog import ToolCatalog
from toolchat.services.tool_switch import (
    MSG_UNCLEAR_CONFIRMATION,
    ToolInference,
    build_decline_message,
    build_help_message,
    build_selection_message,
    build_switch_prompt,
    build_switched_banner,
    is_help_request,
    parse_confirmation,
    parse_tool_selection,
)
from toolchat.services.usage_service import UsageLedger, calculate_cost
from toolchat.services.whatsapp_transport import TransportError, WhatsAppTransport

logger = get_logger("whatsapp")

MSG_AI_UNAVAILABLE = "I'm having trouble thinking right now. Could you try again?"
MSG_FATAL_ERROR = "Sorry, I'm having technical difficulties right now. Please try again later."


def cost_ceiling_message(tool: Tool) -> str:
    return (
        f"⚠️ *{tool.name}* is unavailable today because it reached its daily cost limit.\n\n"
        "Reply *menu* to pick another tool."
    )


def context_before_deferred(context: List[dict], original_message: str) -> List[dict]:
    """History up to the deferred message, dropping it and the confirmation turns after it."""
    for index in range(len(context) - 1, -1, -1):
        item = context[index]
        if item["role"] == "user" and item["content"] == original_message:
            return context[:index]
    # Older than the window, so every remaining turn came after it.
    return []


@dataclass
class InboundResult:
    reply: str
    delivered: bool
    session_id: str


@dataclass
class _Answer:
    text: str
    ok: bool


class WhatsAppConversationHandler:
    def __init__(
        self,
        sessions: WhatsAppSessionStore,
        catalog: ToolCatalog,
        gateway: LLMGateway,
        inference: ToolInference,
        ledger: UsageLedger,
        links: LinkService,
        mirror: CrossChannelMirror,
        transport: WhatsAppTransport,
        settings: Settings,
    ):
        self.sessions = sessions
        self.catalog = catalog
        self.gateway = gateway
        self.inference = inference
        self.ledger = ledger
        self.links = links
        self.mirror = mirror
        self.transport = transport
        self.settings = settings

    def _resolve_current_tool(self, session: WhatsAppSession, tools: List[Tool]) -> Tool:
        tool = next((t for t in tools if t.id == session.current_tool), None)
        if tool is None:
            tool = next((t for t in tools if t.id == self.settings.default_tool_id), None) or tools[0]
            session.current_tool = tool.id
        return tool

    async def _answer(self, session: WhatsAppSession, tool: Tool, context: List[dict], message: str, log: LoggerAdapter) -> _Answer:
        messages = context + [{"role": "user", "content": message}]
        try:
            result = await self.gateway.chat(tool, messages)
        except CostCeilingExceededError as exc:
            log.warning("Tool over daily cost ceiling", context={"tool_id": exc.tool_id, "ceiling": exc.ceiling})
            return _Answer(text=cost_ceiling_message(tool), ok=False)
        except Exception as exc:
            log.error("AI generation failed", context={"tool_id": tool.id, "error": str(exc)})
            return _Answer(text=MSG_AI_UNAVAILABLE, ok=False)

        if not result.content:
            return _Answer(text=MSG_AI_UNAVAILABLE, ok=False)

        await self.ledger.record(
            tool.id,
            result.model,
            prompt_text=message,
            response_text=result.content,
            user_id=session.session_id,
            source="whatsapp",
            prompt_tokens=result.prompt_tokens,
            response_tokens=result.response_tokens,
        )
        cost = calculate_cost(result.prompt_tokens, result.response_tokens, result.model)["total_cost"]
        self.sessions.add_usage(session, result.prompt_tokens + result.response_tokens, cost)
        return _Answer(text=result.content, ok=True)

    async def _mirror(self, session: WhatsAppSession, user_message: str, reply: str, tool_id: str) -> None:
        link = await self.links.get_link_for_whatsapp(session.session_id)
        if link is not None:
            await self.mirror.mirror_to_web(link, user_message, reply, tool=tool_id)

    async def _handle_pending(
        self,
        session: WhatsAppSession,
        body: str,
        current: Tool,
        tools: List[Tool],
        context: List[dict],
        log: LoggerAdapter,
    ) -> str:
        choice = parse_confirmation(body)
        if choice is None:
            return MSG_UNCLEAR_CONFIRMATION

        if choice == "no":
            session.switch_state = switch_state.decline(session.switch_state)
            log.info("Switch declined", context={"tool_id": current.id})
            return build_decline_message(current.name)

        session.switch_state, request = switch_state.confirm(session.switch_state)
        target = next((t for t in tools if t.id == request.to), None)
        if target is None:
            log.warning("Pending switch target no longer available", context={"tool_id": request.to})
            return build_decline_message(current.name)

        self.sessions.set_current_tool(session, target.id)
        log.info("Switch confirmed", context={"from": current.id, "to": target.id})

        replay_context = context_before_deferred(context, request.original_message)
        answer = await self._answer(session, target, replay_context, request.original_message, log)
        if not answer.ok and answer.text == MSG_AI_UNAVAILABLE:
            return build_switched_banner(target, "How can I help you?")
        reply = build_switched_banner(target, answer.text)
        if answer.ok:
            await self._mirror(session, request.original_message, reply, target.id)
        return reply

    async def _handle_idle(
        self,
        session: WhatsAppSession,
        body: str,
        current: Tool,
        tools: List[Tool],
        context: List[dict],
        log: LoggerAdapter,
    ) -> str:
        if is_help_request(body):
            return build_help_message(tools)

        selected = parse_tool_selection(body, tools)
        if selected is not None:
            self.sessions.set_current_tool(session, selected.id)
            log.info("Tool selected by number", context={"tool_id": selected.id})
            return build_selection_message(selected)

        if len(tools) > 1:
            suggestion = await self.inference.suggest(body, current.id, tools)
            candidate = next((t for t in tools if t.id == suggestion), None)
            if candidate is not None:
                session.switch_state = switch_state.request_confirmation(
                    session.switch_state, candidate.id, body, int(time.time() * 1000)
                )
                log.info("Switch suggested", context={"from": current.id, "to": candidate.id})
                return build_switch_prompt(candidate, current.name)

        answer = await self._answer(session, current, context, body, log)
        if answer.ok:
            await self._mirror(session, body, answer.text, current.id)
        return answer.text

    async def handle_message(self, from_number: str, body: str) -> InboundResult:
        phone = normalize_phone(from_number)
        session = await self.sessions.get_or_create(phone)
        log = bind_logger(logger, channel="whatsapp", session_id=session.session_id)

        tools = await self.catalog.list_tools()
        if not tools:
            raise RuntimeError("No active tools configured")
        current = self._resolve_current_tool(session, tools)

        context = self.sessions.recent_history(session)
        self.sessions.append_message(session, "user", body, tool_id=current.id)

        if session.pending_switch is not None:
            reply = await self._handle_pending(session, body, current, tools, context, log)
        else:
            reply = await self._handle_idle(session, body, current, tools, context, log)

        self.sessions.append_message(session, "assistant", reply, tool_id=session.current_tool)
        await self.sessions.save(session)

        delivered = await self.deliver(phone, reply)
        return InboundResult(reply=reply, delivered=delivered, session_id=session.session_id)

    async def deliver(self, phone: str, text: str) -> bool:
        try:
            await self.transport.send_message(phone, text)
            return True
        except TransportError as exc:
            logger.warning("WhatsApp delivery failed", extra={"context": {"phone": phone, "error": str(exc)}})
            return False
