from typing import List, Literal, Optional

from pydantic import Field

from toolchat.schemas.base import CamelModel


class ChatMessage(CamelModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(CamelModel):
    messages: List[ChatMessage] = Field(min_length=1)
    tool_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class ChatUsage(CamelModel):
    prompt_tokens: int = 0
    response_tokens: int = 0


class ChatResponse(CamelModel):
    content: str
    model: str
    tool_id: str
    usage: ChatUsage
