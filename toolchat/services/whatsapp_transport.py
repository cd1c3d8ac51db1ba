"""Outbound WhatsApp delivery through the Twilio Messages REST API."""

import re
from typing import List, Optional

import httpx

from toolchat.config import Settings
from toolchat.logging_config import get_logger

logger = get_logger("whatsapp_transport")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
MAX_CHUNK_LENGTH = 1500


class TransportError(Exception):
    pass


def format_for_whatsapp(text: str) -> str:
    """Convert common markdown to WhatsApp formatting."""
    text = re.sub(r"\*\*(.*?)\*\*", r"*\1*", text)
    text = re.sub(r"__(.*?)__", r"_\1_", text)
    return re.sub(r"(?<!`)`([^`\n]+?)`(?!`)", r"```\1```", text)


def chunk_message(message: str, max_length: int = MAX_CHUNK_LENGTH) -> List[str]:
    """Split on the last space or newline before max_length where possible."""
    if len(message) <= max_length:
        return [message]

    chunks = []
    start = 0
    while start < len(message):
        end = start + max_length
        if end < len(message):
            break_point = max(message.rfind(" ", start, end + 1), message.rfind("\n", start, end + 1))
            if break_point > start:
                end = break_point
        chunk = message[start:end].strip()
        if chunk:
            chunks.append(chunk)
        start = end
    return chunks


class WhatsAppTransport:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.from_number = settings.twilio_phone_number
        self.configured = settings.twilio_configured
        self._client = client or httpx.AsyncClient(timeout=settings.transport_timeout_seconds)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def send_message(self, phone_number: str, text: str) -> List[str]:
        """Send text to a phone number, chunked. Returns provider message ids."""
        if not self.configured:
            raise TransportError("Twilio credentials not configured")
        if not text:
            return []

        to = phone_number.replace("whatsapp:", "").strip()
        chunks = chunk_message(format_for_whatsapp(text))
        sids = []
        for index, chunk in enumerate(chunks, start=1):
            body = f"({index}/{len(chunks)}) {chunk}" if len(chunks) > 1 else chunk
            try:
                response = await self._client.post(
                    self.messages_url,
                    auth=(self.account_sid, self.auth_token),
                    data={"From": f"whatsapp:{self.from_number}", "To": f"whatsapp:{to}", "Body": body},
                )
            except httpx.HTTPError as exc:
                raise TransportError(f"Twilio request failed: {exc}") from exc

            if response.status_code >= 300:
                logger.error(f"Twilio error: status={response.status_code}, body={response.text[:200]}")
                raise TransportError(f"Twilio API error: {response.status_code}")

            sid = (response.json() or {}).get("sid", "")
            logger.info(f"Chunk {index}/{len(chunks)} sent", extra={"context": {"to": to, "sid": sid}})
            sids.append(sid)
        return sids

    async def aclose(self) -> None:
        await self._client.aclose()
