from toolchat.schemas.base import CamelModel
from toolchat.schemas.chat import ChatMessage, ChatRequest, ChatResponse, ChatUsage
from toolchat.schemas.link import (
    LinkRequest,
    LinkRequestResponse,
    LinkVerificationCode,
    LinkVerifyRequest,
    LinkVerifyResponse,
    SessionLink,
)
from toolchat.schemas.session import (
    AwaitingConfirmation,
    HistoryMessage,
    IdleSwitch,
    SessionMetadata,
    SessionUsage,
    SwitchState,
    WhatsAppSession,
)
from toolchat.schemas.sync import MirroredExchange, SyncMessage, SyncResponse
from toolchat.schemas.tool import Tool
from toolchat.schemas.usage import UsageRecord

__all__ = [
    "CamelModel",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatUsage",
    "LinkRequest",
    "LinkRequestResponse",
    "LinkVerificationCode",
    "LinkVerifyRequest",
    "LinkVerifyResponse",
    "SessionLink",
    "AwaitingConfirmation",
    "HistoryMessage",
    "IdleSwitch",
    "SessionMetadata",
    "SessionUsage",
    "SwitchState",
    "WhatsAppSession",
    "MirroredExchange",
    "SyncMessage",
    "SyncResponse",
    "Tool",
    "UsageRecord",
]
