import math
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import redis.asyncio as redis_async
from fastapi import Request

from toolchat.config import Settings
from toolchat.logging_config import get_logger

logger = get_logger("rate_limiter")

MAX_TRACKED_KEYS = 5000


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """In-process sliding-window limiter keyed by client identifier."""

    def __init__(self, window_seconds: float, max_requests: int, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._hits: Dict[str, List[float]] = {}

    def _purge(self, now: float) -> None:
        if len(self._hits) < MAX_TRACKED_KEYS:
            return
        cutoff = now - self.window_seconds
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    def hit(self, identifier: str) -> RateLimitDecision:
        now = self._clock()
        self._purge(now)
        cutoff = now - self.window_seconds
        hits = [stamp for stamp in self._hits.get(identifier, []) if stamp > cutoff]

        if len(hits) >= self.max_requests:
            self._hits[identifier] = hits
            retry_after = max(1, int(hits[0] + self.window_seconds - now + 0.999))
            return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

        hits.append(now)
        self._hits[identifier] = hits
        return RateLimitDecision(allowed=True, remaining=self.max_requests - len(hits))

    async def check(self, identifier: str) -> RateLimitDecision:
        return self.hit(identifier)

    def reset(self, identifier: Optional[str] = None) -> None:
        if identifier is None:
            self._hits.clear()
        else:
            self._hits.pop(identifier, None)


class RedisRateLimiter:
    """Sliding window shared across workers: one sorted set of hit timestamps per identifier.

    Redis errors degrade to the in-process ``fallback`` limiter for that call.
    """

    def __init__(
        self,
        redis_client,
        name: str,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.name = name
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self.fallback = RateLimiter(window_seconds, max_requests)

    def _key(self, identifier: str) -> str:
        return f"toolchat:ratelimit:{self.name}:{identifier}"

    async def check(self, identifier: str) -> RateLimitDecision:
        key = self._key(identifier)
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, math.ceil(self.window_seconds))
            _, _, count, oldest, _ = await pipe.execute()

            if count > self.max_requests:
                await self.redis.zrem(key, member)
                oldest_ts = oldest[0][1] if oldest else now
                retry_after = max(1, math.ceil(oldest_ts + self.window_seconds - now))
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
            return RateLimitDecision(allowed=True, remaining=self.max_requests - count)
        except Exception as exc:
            logger.warning(
                "Redis rate limit check failed, using in-process window",
                extra={"context": {"limiter": self.name, "error": str(exc)}},
            )
            return self.fallback.hit(identifier)


LIMITS = {
    "chat": (60, 20),
    "whatsapp": (60, 10),
    "link_request": (300, 5),
    "link_verify": (300, 5),
    "admin": (300, 50),
}


def get_redis_client(settings: Settings):
    if not settings.redis_url:
        return None
    return redis_async.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )


class RateLimiters:
    """Named limiters; Redis-backed when ``REDIS_URL`` is set, in-process otherwise."""

    def __init__(self, redis_client=None):
        self.redis = redis_client
        self.chat = self._build("chat")
        self.whatsapp = self._build("whatsapp")
        self.link_request = self._build("link_request")
        self.link_verify = self._build("link_verify")
        self.admin = self._build("admin")

    def _build(self, name: str):
        window_seconds, max_requests = LIMITS[name]
        if self.redis is not None:
            return RedisRateLimiter(self.redis, name, window_seconds, max_requests)
        return RateLimiter(window_seconds=window_seconds, max_requests=max_requests)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiters":
        return cls(get_redis_client(settings))

    async def aclose(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()


def client_identifier(request: Request, fallback: Optional[str] = None) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if fallback:
        return f"session:{fallback}"
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
