"""Tool inference and the yes/no switch confirmation protocol for WhatsApp."""

import re
from typing import List, Literal, Optional

from toolchat.logging_config import get_logger
from toolchat.schemas.tool import Tool
from toolchat.services.llm_gateway import LLMGateway

logger = get_logger("tool_switch")

HELP_EXACT = {"help", "menu", "tools", "hello", "hi"}
HELP_CONTAINS = ("what can you do", "what do you do", "capabilities", "features", "options")
TOOL_EMOJIS = ["✍️", "📱", "📧", "📊", "🧮", "🍳", "💻", "🌍", "🏢", "✈️"]
DIGIT_SELECTION = re.compile(r"^[1-9]$")

MSG_UNCLEAR_CONFIRMATION = "Please reply *YES* to switch tools or *NO* to continue with the current tool."

ConfirmationReply = Literal["yes", "no"]

CLASSIFIER_PROMPT = """You are a tool classifier for an AI assistant platform. Given a user message and available tools, suggest the BEST tool ID or return "none" if the current tool is fine.

Available tools:
{tool_descriptions}

Current tool: {current_tool}

Rules:
- Only suggest a switch if the new tool is CLEARLY better for this specific message
- Return ONLY the tool ID (e.g. "creative-writing") or "none"
- Be conservative - don't switch unless the message obviously needs a different tool
- Consider the context: if someone is mid-conversation, prefer keeping the current tool unless very obvious switch needed"""


def is_help_request(text: str) -> bool:
    lowered = (text or "").strip().lower()
    return lowered in HELP_EXACT or any(phrase in lowered for phrase in HELP_CONTAINS)


def parse_tool_selection(text: str, tools: List[Tool]) -> Optional[Tool]:
    stripped = (text or "").strip()
    if not DIGIT_SELECTION.match(stripped):
        return None
    index = int(stripped) - 1
    return tools[index] if index < len(tools) else None


def parse_confirmation(text: str) -> Optional[ConfirmationReply]:
    lowered = (text or "").strip().lower()
    if "yes" in lowered or lowered == "y":
        return "yes"
    if "no" in lowered or lowered == "n":
        return "no"
    return None


def build_help_message(tools: List[Tool]) -> str:
    lines = ["🤖 *ToolChat Assistant* 🤖\n", "I'm your intelligent AI assistant! I can help you with:\n"]
    for index, tool in enumerate(tools):
        emoji = tool.icon or (TOOL_EMOJIS[index] if index < len(TOOL_EMOJIS) else "🔧")
        lines.append(f"{emoji} *{index + 1}. {tool.name}*\n   {tool.description}\n")
    lines.append("💬 *Just start chatting!* I'll automatically suggest the best tool for your needs.\n")
    lines.append(f"🔢 Or reply with a number (1-{min(len(tools), 9)}) to manually select a tool.")
    return "\n".join(lines)


def build_selection_message(tool: Tool) -> str:
    return f"✅ *Switched to {tool.name}*! {tool.description}\n\nHow can I help you?"


def build_switch_prompt(candidate: Tool, current_tool_name: str) -> str:
    return (
        f"🤔 I think *{candidate.name}* would be better for this request.\n\n"
        "*Switch tools?*\n\n"
        "✅ Reply *YES* to switch\n"
        f"❌ Reply *NO* to continue with {current_tool_name}"
    )


def build_switched_banner(tool: Tool, answer: str) -> str:
    return f"✅ *Switched to {tool.name}*\n\n{answer}"


def build_decline_message(current_tool_name: str) -> str:
    return f"👍 Staying with {current_tool_name}. How can I help?"


def build_classifier_prompt(tools: List[Tool], current_tool_id: str) -> str:
    descriptions = "\n".join(f"{tool.id}: {tool.name} - {tool.description}" for tool in tools)
    return CLASSIFIER_PROMPT.format(tool_descriptions=descriptions, current_tool=current_tool_id)


def parse_classifier_answer(raw: Optional[str], tools: List[Tool]) -> Optional[str]:
    answer = (raw or "").strip().strip("\"'`.").strip().lower()
    if not answer or answer == "none":
        return None
    known = {tool.id for tool in tools}
    if answer in known:
        return answer
    logger.info(f"Classifier returned unknown tool id: {raw!r}")
    return None


class ToolInference:
    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    async def suggest(self, message: str, current_tool_id: str, tools: List[Tool]) -> Optional[str]:
        """Return a better-fit tool id, or None to keep the current tool. Never raises."""
        try:
            raw = await self.gateway.classify(
                build_classifier_prompt(tools, current_tool_id),
                f'Message: "{message}"',
            )
        except Exception as exc:
            logger.warning(
                "Tool inference failed, keeping current tool",
                extra={"context": {"current_tool": current_tool_id, "error": str(exc)}},
            )
            return None

        suggestion = parse_classifier_answer(raw, tools)
        if suggestion == current_tool_id:
            return None
        logger.info(f'Tool inference: "{message[:50]}" -> {suggestion or "none"}')
        return suggestion
