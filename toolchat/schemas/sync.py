from typing import List, Literal, Optional

from toolchat.schemas.base import CamelModel


class SyncMessage(CamelModel):
    direction: Literal["whatsapp-to-web", "web-to-whatsapp"]
    web_session_id: Optional[str] = None
    whatsapp_session_id: Optional[str] = None
    user_message: Optional[str] = None
    ai_response: Optional[str] = None
    tool: Optional[str] = None
    timestamp: int
    phone_number: Optional[str] = None
    message_type: Literal["user", "ai", "legacy-combined"] = "legacy-combined"


class MirroredExchange(CamelModel):
    user_message: Optional[str] = None
    ai_response: Optional[str] = None
    tool: Optional[str] = None
    timestamp: int
    source: str = "whatsapp"


class SyncResponse(CamelModel):
    messages: List[MirroredExchange]
    count: int
