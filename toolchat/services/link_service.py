"""Verification-code pairing between a web session and a WhatsApp number."""

import asyncio
import secrets
import time
from datetime import datetime, timezone
from typing import Optional

from toolchat.config import Settings
from toolchat.logging_config import get_logger
from toolchat.schemas.link import LinkVerificationCode, SessionLink
from toolchat.services.phone import is_valid_phone, normalize_phone, whatsapp_session_id
from toolchat.services.whatsapp_transport import TransportError, WhatsAppTransport
from toolchat.storage.base import KeyValueStore

logger = get_logger("link")

WEB_TO_WHATSAPP_PREFIX = "web-to-whatsapp-"
WHATSAPP_TO_WEB_PREFIX = "whatsapp-to-web-"
LINK_CODE_PREFIX = "link-code-"


class LinkError(Exception):
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingFieldsError(LinkError):
    status_code = 400


class InvalidPhoneNumberError(LinkError):
    status_code = 400

    def __init__(self, phone_number: str):
        self.phone_number = phone_number
        super().__init__(
            f"Invalid phone number format: {phone_number}. Use international format like +1234567890"
        )


class CodeNotFoundError(LinkError):
    status_code = 404

    def __init__(self):
        super().__init__("Verification code not found or expired")


class CodeExpiredError(LinkError):
    status_code = 410

    def __init__(self):
        super().__init__("Verification code has expired")


class CodeMismatchError(LinkError):
    status_code = 400

    def __init__(self):
        super().__init__("Invalid verification code")


class TransportUnavailableError(LinkError):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(f"Failed to send verification code: {detail}")


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def link_code_message(code: str, ttl_minutes: float) -> str:
    return (
        "🔗 *Link Code*\n\n"
        f"Your verification code: *{code}*\n\n"
        "Enter this code in the web app to link your WhatsApp with your browser session.\n\n"
        f"This code expires in {int(ttl_minutes)} minutes."
    )


class LinkService:
    def __init__(
        self,
        link_store: KeyValueStore,
        code_store: KeyValueStore,
        transport: WhatsAppTransport,
        settings: Settings,
    ):
        self.link_store = link_store
        self.code_store = code_store
        self.transport = transport
        self.settings = settings

    async def request_link(self, phone_number: Optional[str], web_session_id: Optional[str], tool_id: Optional[str]) -> LinkVerificationCode:
        if not phone_number or not web_session_id:
            raise MissingFieldsError("Missing required fields: phoneNumber, sessionId")
        phone = normalize_phone(phone_number)
        if not is_valid_phone(phone):
            raise InvalidPhoneNumberError(phone_number)

        record = LinkVerificationCode(
            code=generate_code(),
            session_id=web_session_id,
            tool_id=tool_id,
            phone_number=phone,
            expires=_now_ms() + int(self.settings.link_code_ttl_minutes * 60 * 1000),
        )
        # One outstanding code per number: a new request overwrites the previous one.
        await self.code_store.set_json(f"{LINK_CODE_PREFIX}{phone}", record.to_storage())

        try:
            await self.transport.send_message(phone, link_code_message(record.code, self.settings.link_code_ttl_minutes))
        except TransportError as exc:
            logger.error(
                "Link code delivery failed",
                extra={"context": {"phone": phone, "error": str(exc)}},
            )
            raise TransportUnavailableError(str(exc)) from exc

        logger.info("Link code issued", extra={"context": {"phone": phone, "session_id": web_session_id}})
        return record

    async def _find_code(self, phone: str, raw_phone: str) -> tuple[Optional[str], Optional[LinkVerificationCode]]:
        for candidate in dict.fromkeys((phone, raw_phone)):
            key = f"{LINK_CODE_PREFIX}{candidate}"
            payload = await self.code_store.get_json(key)
            if payload:
                return key, LinkVerificationCode.model_validate(payload)
        return None, None

    async def verify(self, phone_number: Optional[str], code: Optional[str], web_session_id: Optional[str]) -> SessionLink:
        if not phone_number or not code or not web_session_id:
            raise MissingFieldsError("Missing required fields: phoneNumber, code, sessionId")
        phone = normalize_phone(phone_number)

        key, stored = await self._find_code(phone, phone_number.strip())
        if stored is None:
            raise CodeNotFoundError()
        if _now_ms() > stored.expires:
            await self.code_store.delete(key)
            raise CodeExpiredError()
        if str(code).strip() != stored.code:
            raise CodeMismatchError()

        link = SessionLink(
            web_session_id=web_session_id,
            whatsapp_session_id=whatsapp_session_id(phone),
            phone_number=phone,
            tool_id=stored.tool_id,
            linked_at=datetime.now(timezone.utc).isoformat(),
            last_sync_at=None,
        )
        payload = link.to_storage()
        await asyncio.gather(
            self.link_store.set_json(f"{WEB_TO_WHATSAPP_PREFIX}{link.web_session_id}", payload),
            self.link_store.set_json(f"{WHATSAPP_TO_WEB_PREFIX}{link.whatsapp_session_id}", payload),
        )
        await self.code_store.delete(key)

        logger.info(
            "Sessions linked",
            extra={"context": {"web_session_id": web_session_id, "whatsapp_session_id": link.whatsapp_session_id}},
        )
        return link

    async def _get_link(self, key: str) -> Optional[SessionLink]:
        try:
            payload = await self.link_store.get_json(key)
        except Exception as exc:
            logger.warning(f"Link lookup failed for {key}: {exc}")
            return None
        return SessionLink.model_validate(payload) if payload else None

    async def get_link_for_web(self, web_session_id: str) -> Optional[SessionLink]:
        """Resolve a link from the web side. Both directional views must be present."""
        link = await self._get_link(f"{WEB_TO_WHATSAPP_PREFIX}{web_session_id}")
        if link is None:
            return None
        if await self._get_link(f"{WHATSAPP_TO_WEB_PREFIX}{link.whatsapp_session_id}") is None:
            return None
        return link

    async def get_link_for_whatsapp(self, session_id: str) -> Optional[SessionLink]:
        link = await self._get_link(f"{WHATSAPP_TO_WEB_PREFIX}{session_id}")
        if link is None:
            return None
        if await self._get_link(f"{WEB_TO_WHATSAPP_PREFIX}{link.web_session_id}") is None:
            return None
        return link

    async def is_linked(self, web_session_id: str) -> bool:
        return await self.get_link_for_web(web_session_id) is not None
