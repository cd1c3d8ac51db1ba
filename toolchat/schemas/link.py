from typing import Optional

from toolchat.schemas.base import CamelModel


class SessionLink(CamelModel):
    web_session_id: str
    whatsapp_session_id: str
    phone_number: str
    tool_id: Optional[str] = None
    linked_at: str
    last_sync_at: Optional[str] = None


class LinkVerificationCode(CamelModel):
    code: str
    session_id: str
    tool_id: Optional[str] = None
    phone_number: str
    expires: int


class LinkRequest(CamelModel):
    phone_number: Optional[str] = None
    session_id: Optional[str] = None
    tool_id: Optional[str] = None


class LinkRequestResponse(CamelModel):
    success: bool
    message: Optional[str] = None


class LinkVerifyRequest(CamelModel):
    phone_number: Optional[str] = None
    code: Optional[str] = None
    session_id: Optional[str] = None


class LinkVerifyResponse(CamelModel):
    success: bool
    linked_session_id: str
    phone_number: str
