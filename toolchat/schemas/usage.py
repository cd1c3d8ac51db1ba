from typing import Literal

from pydantic import ConfigDict

from toolchat.schemas.base import CamelModel


class UsageRecord(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: str
    tool_id: str
    model: str
    user_id: str = "anonymous"
    source: Literal["web", "whatsapp"] = "web"
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0
    prompt_cost: float = 0.0
    response_cost: float = 0.0
    total_cost: float = 0.0
