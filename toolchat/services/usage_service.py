"""Usage ledger: one immutable record per completed LLM call, plus reporting."""

import math
import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

from toolchat.logging_config import get_logger
from toolchat.schemas.usage import UsageRecord
from toolchat.storage.base import KeyValueStore

logger = get_logger("usage")

USAGE_KEY_PREFIX = "usage_"
RECENT_ACTIVITY_LIMIT = 10
TOKENS_PER_CHAR = 0.25

# USD per 1K tokens.
MODEL_PRICING = {
    "gpt-4o": {"prompt": 0.03, "response": 0.06},
    "gpt-4o-mini": {"prompt": 0.00015, "response": 0.0006},
    "gpt-3.5-turbo": {"prompt": 0.001, "response": 0.002},
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return math.ceil(len(text) * TOKENS_PER_CHAR)


def get_pricing(model: Optional[str]) -> dict:
    return MODEL_PRICING.get(model or "", MODEL_PRICING[DEFAULT_PRICING_MODEL])


def calculate_cost(prompt_tokens: int, response_tokens: int, model: Optional[str]) -> dict:
    pricing = get_pricing(model)
    prompt_cost = prompt_tokens * pricing["prompt"] / 1000
    response_cost = response_tokens * pricing["response"] / 1000
    return {
        "prompt_cost": round(prompt_cost, 4),
        "response_cost": round(response_cost, 4),
        "total_cost": round(prompt_cost + response_cost, 4),
    }


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _bucket() -> dict:
    return {"requests": 0, "tokens": 0, "cost": 0.0}


def empty_stats(days: int) -> dict:
    return {
        "period": f"{days} days",
        "total": {"requests": 0, "tokens": 0, "cost": 0, "avgCostPerRequest": 0, "avgTokensPerRequest": 0},
        "byTool": {},
        "byModel": {},
        "bySource": {},
        "dailyBreakdown": [],
        "recentActivity": [],
    }


def build_stats(records: List[UsageRecord], days: int, now: Optional[datetime] = None) -> dict:
    """Aggregate already-filtered records into the reporting structure."""
    now = now or datetime.now(timezone.utc)
    records = sorted(records, key=lambda r: r.timestamp)

    total_requests = len(records)
    total_tokens = sum(r.total_tokens for r in records)
    total_cost = sum(r.total_cost for r in records)

    by_tool: dict = {}
    by_model: dict = {}
    by_source: dict = {}
    for record in records:
        for groups, group_key in (
            (by_tool, record.tool_id or "unknown"),
            (by_model, record.model or "unknown"),
            (by_source, record.source or "web"),
        ):
            bucket = groups.setdefault(group_key, _bucket())
            bucket["requests"] += 1
            bucket["tokens"] += record.total_tokens
            bucket["cost"] += record.total_cost

    for bucket in (*by_tool.values(), *by_model.values(), *by_source.values()):
        bucket["cost"] = round(bucket["cost"], 4)
    for bucket in by_tool.values():
        bucket["avgCostPerRequest"] = round(bucket["cost"] / bucket["requests"], 4)
        bucket["avgTokensPerRequest"] = bucket["tokens"] / bucket["requests"]

    # Buckets are trailing 24h slices ending at ``now``, labelled by their end date,
    # so they partition the same window the totals cover.
    daily = []
    for offset in range(days - 1, -1, -1):
        end = now - timedelta(days=offset)
        daily.append(
            {
                "date": end.date().isoformat(),
                "windowStart": (end - timedelta(days=1)).isoformat(),
                "requests": 0,
                "tokens": 0,
                "cost": 0.0,
            }
        )
    for record in records:
        stamp = _parse_timestamp(record.timestamp)
        if stamp is None:
            continue
        offset = min(days - 1, max(0, int((now - stamp) / timedelta(days=1))))
        entry = daily[days - 1 - offset]
        entry["requests"] += 1
        entry["tokens"] += record.total_tokens
        entry["cost"] += record.total_cost
    for entry in daily:
        entry["cost"] = round(entry["cost"], 4)

    return {
        "period": f"{days} days",
        "total": {
            "requests": total_requests,
            "tokens": total_tokens,
            "cost": round(total_cost, 4),
            "avgCostPerRequest": round(total_cost / total_requests, 4) if total_requests else 0,
            "avgTokensPerRequest": round(total_tokens / total_requests) if total_requests else 0,
        },
        "byTool": by_tool,
        "byModel": by_model,
        "bySource": by_source,
        "dailyBreakdown": daily,
        "recentActivity": [r.to_storage() for r in reversed(records[-RECENT_ACTIVITY_LIMIT:])],
    }


class UsageLedger:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def record(
        self,
        tool_id: str,
        model: str,
        prompt_text: str,
        response_text: str,
        user_id: Optional[str] = None,
        source: str = "web",
        prompt_tokens: Optional[int] = None,
        response_tokens: Optional[int] = None,
    ) -> UsageRecord:
        """Build and persist a usage record. Storage failures are logged, never raised."""
        if prompt_tokens is None:
            prompt_tokens = estimate_tokens(prompt_text)
        if response_tokens is None:
            response_tokens = estimate_tokens(response_text)
        costs = calculate_cost(prompt_tokens, response_tokens, model)

        record = UsageRecord(
            id=f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
            timestamp=datetime.now(timezone.utc).isoformat(),
            tool_id=tool_id or "unknown",
            model=model,
            user_id=user_id or "anonymous",
            source=source if source in ("web", "whatsapp") else "web",
            prompt_tokens=prompt_tokens,
            response_tokens=response_tokens,
            total_tokens=prompt_tokens + response_tokens,
            **costs,
        )

        try:
            await self.store.set_json(
                f"{USAGE_KEY_PREFIX}{record.id}",
                record.to_storage(),
                metadata={"toolId": record.tool_id, "timestamp": record.timestamp, "cost": record.total_cost},
            )
        except Exception as exc:
            logger.warning(
                "Failed to persist usage record",
                extra={"context": {"tool_id": record.tool_id, "error": str(exc)}},
            )
        return record

    async def _load_records(self, tool_id: Optional[str], since: Optional[datetime] = None) -> List[UsageRecord]:
        entries = await self.store.list(prefix=USAGE_KEY_PREFIX)
        records: List[UsageRecord] = []
        for entry in entries:
            meta = entry.metadata or {}
            if tool_id and meta.get("toolId") not in (None, tool_id):
                continue
            if since and meta.get("timestamp"):
                stamp = _parse_timestamp(meta["timestamp"])
                if stamp is not None and stamp < since:
                    continue
            try:
                payload = await self.store.get_json(entry.key)
            except Exception as exc:
                logger.warning(f"Could not load usage record {entry.key}: {exc}")
                continue
            if not payload:
                continue
            record = UsageRecord.model_validate(payload)
            if tool_id and record.tool_id != tool_id:
                continue
            records.append(record)
        return records

    async def stats(self, tool_id: Optional[str] = None, days: int = 7) -> dict:
        try:
            now = datetime.now(timezone.utc)
            cutoff = now - timedelta(days=days)
            records = await self._load_records(tool_id, since=cutoff)
            in_window = [r for r in records if (_parse_timestamp(r.timestamp) or cutoff) >= cutoff]
            return build_stats(in_window, days, now=now)
        except Exception as exc:
            logger.error(
                "Failed to compute usage stats",
                extra={"context": {"tool_id": tool_id, "days": days, "error": str(exc)}},
            )
            return empty_stats(days)

    async def today_cost(self, tool_id: str) -> float:
        try:
            stats = await self.stats(tool_id, days=1)
            return float(stats["total"]["cost"])
        except Exception as exc:
            logger.warning(f"today_cost failed for {tool_id}: {exc}")
            return 0.0

    async def usage_for_date_range(self, tool_id: Optional[str], start_date: date, end_date: date) -> List[UsageRecord]:
        try:
            start = datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc)
            end = datetime.combine(end_date, datetime.max.time(), tzinfo=timezone.utc)
            records = await self._load_records(tool_id, since=start)
            selected = []
            for record in records:
                stamp = _parse_timestamp(record.timestamp)
                if stamp is not None and start <= stamp <= end:
                    selected.append(record)
            return selected
        except Exception as exc:
            logger.error(
                "Failed to load usage for date range",
                extra={"context": {"tool_id": tool_id, "error": str(exc)}},
            )
            return []

    async def cost_summary(self, tool_id: str) -> dict:
        today = datetime.now(timezone.utc).date()
        today_records = await self.usage_for_date_range(tool_id, today, today)
        weekly_records = await self.usage_for_date_range(tool_id, today - timedelta(days=7), today)

        today_cost = sum(r.total_cost for r in today_records)
        message_count = len(today_records)
        return {
            "toolId": tool_id,
            "date": today.isoformat(),
            "todayCost": round(today_cost, 4),
            "messageCount": message_count,
            "tokenCount": _sum_tokens(today_records),
            "avgCostPerMessage": round(today_cost / message_count, 4) if message_count else 0,
            "weeklyCost": round(sum(r.total_cost for r in weekly_records), 4),
            "trend": "active" if message_count else "quiet",
        }


def _sum_tokens(records: Iterable[UsageRecord]) -> int:
    return sum(r.prompt_tokens + r.response_tokens for r in records)
