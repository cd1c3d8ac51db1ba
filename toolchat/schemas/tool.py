from typing import Optional

from pydantic import Field

from toolchat.schemas.base import CamelModel


class Tool(CamelModel):
    id: str
    name: str
    description: str = ""
    icon: Optional[str] = None
    system_prompt: str
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1000, gt=0)
    cost_ceiling: Optional[float] = None
    fallback_model: Optional[str] = None
    is_active: bool = True
    order_index: int = 0

    @property
    def ceiling_enabled(self) -> bool:
        return self.cost_ceiling is not None and self.cost_ceiling > 0
