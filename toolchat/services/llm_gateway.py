"""Normalized access to the chat-completion provider in chat, classification and summary modes."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from toolchat.config import Settings
from toolchat.logging_config import get_logger
from toolchat.schemas.tool import Tool
from toolchat.services.cost_governor import CostGovernor
from toolchat.services.llm.base import LLMProvider, LLMResponse
from toolchat.services.usage_service import estimate_tokens

logger = get_logger("llm_gateway")

SUMMARY_PROMPT = "Summarize this conversation in 2-3 sentences, focusing on key topics and outcomes."


@dataclass
class ChatResult:
    content: str
    model: str
    prompt_tokens: int
    response_tokens: int


def _prompt_text(messages: Sequence[dict]) -> str:
    return "\n".join(str(message.get("content") or "") for message in messages)


def _normalize_usage(response: LLMResponse, messages: Sequence[dict]) -> tuple[int, int]:
    usage = response.usage or {}
    prompt_tokens = usage.get("prompt_tokens", usage.get("promptTokens"))
    response_tokens = usage.get("completion_tokens", usage.get("responseTokens"))
    if prompt_tokens is None:
        prompt_tokens = estimate_tokens(_prompt_text(messages))
    if response_tokens is None:
        response_tokens = estimate_tokens(response.content)
    return int(prompt_tokens), int(response_tokens)


class LLMGateway:
    def __init__(self, provider: LLMProvider, governor: CostGovernor, settings: Settings):
        self.provider = provider
        self.governor = governor
        self.settings = settings

    async def chat(self, tool: Tool, messages: List[dict]) -> ChatResult:
        """Run a chat turn for a tool. CostCeilingExceededError propagates to the caller."""
        model = await self.governor.select_model(tool.id, tool.model)
        full_messages = [{"role": "system", "content": tool.system_prompt}]
        full_messages.extend({"role": m["role"], "content": m["content"]} for m in messages if m.get("role") != "system")
        max_tokens = min(tool.max_tokens, self.settings.max_response_tokens)

        response = await self.provider.generate(
            full_messages,
            model=model,
            temperature=tool.temperature if tool.temperature is not None else 0.7,
            max_tokens=max_tokens,
        )
        prompt_tokens, response_tokens = _normalize_usage(response, full_messages)
        return ChatResult(
            content=response.content,
            model=response.model or model,
            prompt_tokens=prompt_tokens,
            response_tokens=response_tokens,
        )

    async def classify(self, system_prompt: str, user_text: str) -> str:
        response = await self.provider.generate(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            model=self.settings.classifier_model,
            temperature=self.settings.classifier_temperature,
            max_tokens=self.settings.classifier_max_tokens,
        )
        return (response.content or "").strip()

    async def summarize(self, history: Sequence[dict]) -> Optional[str]:
        if not history:
            return None
        messages = [{"role": "system", "content": SUMMARY_PROMPT}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in history if m.get("content"))
        response = await self.provider.generate(
            messages,
            model=self.settings.summary_model,
            temperature=self.settings.summary_temperature,
            max_tokens=self.settings.summary_max_tokens,
        )
        summary = (response.content or "").strip()
        return summary or None
