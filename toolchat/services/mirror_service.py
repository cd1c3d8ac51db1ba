"""Relay of completed exchanges between linked web and WhatsApp sessions.

Each exchange is written as two sync records sharing a base timestamp: the user
half at ``base`` and the AI half at ``base + 1``. Both keys end in the same random
pair suffix (``{prefix}{user|ai}-{base}-{suffix}``). The web poller groups records by
base timestamp and pair suffix, and only emits a group once both halves are present
(or the record is a single legacy-combined one). Records older than the freshness window are
ignored and left for the store's own retention.
"""

import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from toolchat.config import Settings
from toolchat.logging_config import get_logger
from toolchat.schemas.link import SessionLink
from toolchat.schemas.sync import MirroredExchange, SyncMessage
from toolchat.services.whatsapp_transport import WhatsAppTransport
from toolchat.storage.base import KeyValueStore

logger = get_logger("mirror")

WHATSAPP_MIRROR_PREFIX = "whatsapp-mirror-"
WEB_MIRROR_PREFIX = "web-mirror-"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _pair_suffix(key: str, prefix: str) -> str:
    """Suffix shared by both halves of one exchange; empty for keys written without one."""
    parts = key[len(prefix):].split("-")
    return parts[2] if len(parts) == 3 else ""


@dataclass
class _Group:
    timestamp: int
    tool: Optional[str]
    user_message: Optional[str] = None
    ai_response: Optional[str] = None
    has_user: bool = False
    has_ai: bool = False
    combined: bool = False
    keys: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.combined or (self.has_user and self.has_ai)


class CrossChannelMirror:
    def __init__(self, store: KeyValueStore, transport: WhatsAppTransport, settings: Settings):
        self.store = store
        self.transport = transport
        self.settings = settings

    @property
    def freshness_ms(self) -> int:
        return int(self.settings.sync_freshness_minutes * 60 * 1000)

    async def _write_pair(self, prefix: str, user_record: SyncMessage, ai_record: SyncMessage) -> None:
        suffix = secrets.token_hex(3)
        base = user_record.timestamp
        await self.store.set_json(f"{prefix}user-{base}-{suffix}", user_record.to_storage())
        await self.store.set_json(f"{prefix}ai-{base}-{suffix}", ai_record.to_storage())

    async def mirror_to_web(self, link: SessionLink, user_message: str, ai_response: str, tool: Optional[str] = None) -> bool:
        """Queue a WhatsApp exchange for the linked web session's poller. Never raises."""
        try:
            base = _now_ms()
            common = {
                "direction": "whatsapp-to-web",
                "web_session_id": link.web_session_id,
                "whatsapp_session_id": link.whatsapp_session_id,
                "tool": tool or link.tool_id,
                "phone_number": link.phone_number,
            }
            await self._write_pair(
                WHATSAPP_MIRROR_PREFIX,
                SyncMessage(**common, user_message=user_message, ai_response=None, timestamp=base, message_type="user"),
                SyncMessage(**common, user_message=None, ai_response=ai_response, timestamp=base + 1, message_type="ai"),
            )
            return True
        except Exception as exc:
            logger.warning(
                "Mirror to web failed",
                extra={"context": {"web_session_id": link.web_session_id, "error": str(exc)}},
            )
            return False

    async def mirror_to_whatsapp(self, link: SessionLink, user_message: str, ai_response: str, tool: Optional[str] = None) -> bool:
        """Push a web exchange to the linked phone and record it. Never raises."""
        try:
            await self.transport.send_message(link.phone_number, f"[From Web] {user_message}")
            await self.transport.send_message(link.phone_number, ai_response)

            base = _now_ms()
            common = {
                "direction": "web-to-whatsapp",
                "web_session_id": link.web_session_id,
                "whatsapp_session_id": link.whatsapp_session_id,
                "tool": tool or link.tool_id,
                "phone_number": link.phone_number,
            }
            await self._write_pair(
                WEB_MIRROR_PREFIX,
                SyncMessage(**common, user_message=user_message, ai_response=None, timestamp=base, message_type="user"),
                SyncMessage(**common, user_message=None, ai_response=ai_response, timestamp=base + 1, message_type="ai"),
            )
            return True
        except Exception as exc:
            logger.warning(
                "Mirror to WhatsApp failed",
                extra={"context": {"phone": link.phone_number, "error": str(exc)}},
            )
            return False

    async def poll(self, web_session_id: str) -> List[MirroredExchange]:
        """Return and consume complete exchanges addressed to a web session, oldest first."""
        now = _now_ms()
        groups: Dict[Tuple[int, str], _Group] = {}

        entries = await self.store.list(prefix=WHATSAPP_MIRROR_PREFIX)
        for entry in entries:
            try:
                payload = await self.store.get_json(entry.key)
                if not payload:
                    continue
                record = SyncMessage.model_validate(payload)
            except Exception as exc:
                logger.warning(f"Skipping unreadable sync record {entry.key}: {exc}")
                continue

            if record.web_session_id != web_session_id:
                continue
            if now - record.timestamp >= self.freshness_ms:
                continue

            base = record.timestamp - 1 if record.message_type == "ai" else record.timestamp
            if record.message_type in ("user", "ai"):
                group_id = (base, _pair_suffix(entry.key, WHATSAPP_MIRROR_PREFIX))
            else:
                group_id = (base, entry.key)
            group = groups.setdefault(group_id, _Group(timestamp=base, tool=record.tool))
            group.keys.append(entry.key)
            if record.message_type == "user":
                group.user_message = record.user_message
                group.has_user = True
            elif record.message_type == "ai":
                group.ai_response = record.ai_response
                group.has_ai = True
            else:
                group.user_message = record.user_message
                group.ai_response = record.ai_response
                group.combined = True

        exchanges = []
        for group in groups.values():
            if not group.complete:
                continue
            exchanges.append(
                MirroredExchange(
                    user_message=group.user_message,
                    ai_response=group.ai_response,
                    tool=group.tool,
                    timestamp=group.timestamp,
                    source="whatsapp",
                )
            )
            for key in group.keys:
                try:
                    await self.store.delete(key)
                except Exception as exc:
                    logger.warning(f"Failed to delete consumed sync record {key}: {exc}")

        exchanges.sort(key=lambda item: item.timestamp)
        return exchanges
