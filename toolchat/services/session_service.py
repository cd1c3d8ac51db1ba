"""Per-phone WhatsApp conversation state with inactivity-driven summarization."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from toolchat.config import Settings
from toolchat.logging_config import get_logger
from toolchat.schemas.session import HistoryMessage, SessionMetadata, WhatsAppSession
from toolchat.services.phone import normalize_phone, whatsapp_session_id
from toolchat.services.scheduler import DelayedJobScheduler
from toolchat.services.summary_service import SummaryService
from toolchat.storage.base import KeyValueStore

logger = get_logger("whatsapp_session")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def new_session(phone_number: str, language: str = "en") -> WhatsAppSession:
    now = _now_iso()
    return WhatsAppSession(
        session_id=whatsapp_session_id(phone_number),
        phone_number=phone_number,
        current_tool=None,
        language=language,
        conversation_history=[],
        metadata=SessionMetadata(start_time=now, last_activity=now, message_count=0),
    )


class WhatsAppSessionStore:
    def __init__(
        self,
        store: KeyValueStore,
        scheduler: DelayedJobScheduler,
        summaries: SummaryService,
        settings: Settings,
    ):
        self.store = store
        self.scheduler = scheduler
        self.summaries = summaries
        self.settings = settings

    @property
    def timeout_seconds(self) -> float:
        return self.settings.session_timeout_minutes * 60

    def _arm_timer(self, session_id: str) -> None:
        self.scheduler.schedule(session_id, self.timeout_seconds, self._on_inactive)

    async def _load(self, session_id: str) -> Optional[WhatsAppSession]:
        payload = await self.store.get_json(session_id)
        if not payload:
            return None
        return WhatsAppSession.model_validate(payload)

    async def get_or_create(self, phone_number: str) -> WhatsAppSession:
        phone_number = normalize_phone(phone_number)
        session_id = whatsapp_session_id(phone_number)
        try:
            session = await self._load(session_id)
        except Exception as exc:
            logger.warning(
                "Session load failed, continuing with an ephemeral session",
                extra={"context": {"session_id": session_id, "error": str(exc)}},
            )
            session = None

        if session is None:
            session = new_session(phone_number)
        else:
            session.metadata.last_activity = _now_iso()

        self._arm_timer(session.session_id)
        return session

    def append_message(self, session: WhatsAppSession, role: str, content: str, tool_id: Optional[str] = None) -> None:
        now = _now_iso()
        session.conversation_history.append(HistoryMessage(role=role, content=content, timestamp=now, tool_id=tool_id))
        limit = self.settings.stored_history_limit
        if len(session.conversation_history) > limit:
            session.conversation_history = session.conversation_history[-limit:]
        session.metadata.last_activity = now
        session.metadata.message_count += 1
        self._arm_timer(session.session_id)

    def set_current_tool(self, session: WhatsAppSession, tool_id: str) -> None:
        session.current_tool = tool_id
        session.metadata.last_activity = _now_iso()
        self._arm_timer(session.session_id)

    def add_usage(self, session: WhatsAppSession, tokens: int, cost: float) -> None:
        session.usage.tokens += tokens
        session.usage.cost = round(session.usage.cost + cost, 6)

    def recent_history(self, session: WhatsAppSession, max_messages: Optional[int] = None) -> List[dict]:
        window = max_messages or self.settings.history_window
        return [{"role": m.role, "content": m.content} for m in session.conversation_history[-window:]]

    async def save(self, session: WhatsAppSession) -> bool:
        """Overwrite the stored record. Failures are logged and reported as False."""
        self._arm_timer(session.session_id)
        try:
            await self.store.set_json(
                session.session_id,
                session.to_storage(),
                metadata={"phoneNumber": session.phone_number, "lastActivity": session.metadata.last_activity},
            )
            return True
        except Exception as exc:
            logger.error(
                "Failed to save session (continuing)",
                extra={"context": {"session_id": session.session_id, "error": str(exc)}},
            )
            return False

    async def clear(self, phone_number: str) -> bool:
        session_id = whatsapp_session_id(normalize_phone(phone_number))
        self.scheduler.cancel(session_id)
        existing = await self.store.get(session_id)
        if existing is None:
            return False
        await self.store.delete(session_id)
        return True

    async def list_sessions(self) -> List[dict]:
        entries = await self.store.list(prefix="whatsapp_")
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.timeout_seconds)
        sessions = []
        for entry in entries:
            try:
                session = await self._load(entry.key)
            except Exception as exc:
                logger.warning(f"Skipping unreadable session {entry.key}: {exc}")
                continue
            if session is None:
                continue
            last_activity = _parse_iso(session.metadata.last_activity)
            sessions.append(
                {
                    "sessionId": session.session_id,
                    "phoneNumber": session.phone_number,
                    "currentTool": session.current_tool,
                    "messageCount": session.metadata.message_count,
                    "lastActivity": session.metadata.last_activity,
                    "usage": session.usage.to_storage(),
                    "awaitingConfirmation": session.pending_switch is not None,
                    "isExpired": last_activity is None or last_activity < cutoff,
                }
            )
        sessions.sort(key=lambda item: item["lastActivity"] or "", reverse=True)
        return sessions

    async def cleanup_inactive(self, days_threshold: Optional[int] = None) -> int:
        days = days_threshold if days_threshold is not None else self.settings.session_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        cleaned = 0
        for entry in await self.store.list(prefix="whatsapp_"):
            try:
                session = await self._load(entry.key)
            except Exception as exc:
                logger.warning(f"Skipping unreadable session {entry.key}: {exc}")
                continue
            if session is None:
                continue
            last_activity = _parse_iso(session.metadata.last_activity)
            if last_activity is not None and last_activity >= cutoff:
                continue
            self.scheduler.cancel(entry.key)
            await self.store.delete(entry.key)
            cleaned += 1
        if cleaned:
            logger.info(f"Cleaned up {cleaned} inactive WhatsApp sessions")
        return cleaned

    async def _on_inactive(self, session_id: str) -> None:
        try:
            session = await self._load(session_id)
        except Exception as exc:
            logger.warning(f"Could not load {session_id} for summarization: {exc}")
            return
        if session is None or not session.conversation_history:
            return
        history = [{"role": m.role, "content": m.content} for m in session.conversation_history]
        try:
            await self.summaries.summarize_and_store(session_id, history)
        except Exception as exc:
            logger.warning(
                "Inactivity summarization failed",
                extra={"context": {"session_id": session_id, "error": str(exc)}},
            )
