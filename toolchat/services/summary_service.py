from datetime import datetime, timezone
from typing import List, Optional, Sequence

from toolchat.logging_config import get_logger
from toolchat.services.llm_gateway import LLMGateway
from toolchat.storage.base import KeyValueStore

logger = get_logger("summary")

SUMMARY_KEY_PREFIX = "summary-"


class SummaryService:
    def __init__(self, store: KeyValueStore, gateway: LLMGateway):
        self.store = store
        self.gateway = gateway

    async def summarize_and_store(self, session_id: str, history: Sequence[dict]) -> Optional[dict]:
        if not history:
            return None
        summary = await self.gateway.summarize(history)
        if not summary:
            logger.warning(f"Empty summary for {session_id}")
            return None

        record = {
            "sessionId": session_id,
            "summary": summary,
            "messageCount": len(history),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        await self.store.set_json(f"{SUMMARY_KEY_PREFIX}{session_id}", record, metadata={"sessionId": session_id})
        logger.info(f"Stored summary for {session_id}", extra={"context": {"message_count": len(history)}})
        return record

    async def fetch_summaries(self, limit: int = 10) -> List[dict]:
        try:
            entries = await self.store.list(prefix=SUMMARY_KEY_PREFIX)
            summaries = []
            for entry in entries:
                record = await self.store.get_json(entry.key)
                if record:
                    summaries.append(record)
        except Exception as exc:
            logger.error("Failed to fetch summaries", extra={"context": {"error": str(exc)}})
            return []
        summaries.sort(key=lambda item: item.get("timestamp") or "", reverse=True)
        return summaries[:limit]
