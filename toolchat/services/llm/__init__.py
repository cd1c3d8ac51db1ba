from toolchat.services.llm.base import LLMProvider, LLMProviderError, LLMResponse
from toolchat.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMProviderError", "LLMResponse", "OpenAIProvider"]
