from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Request
from limits import RateLimitItemPerMinute
from limits.aio.strategies import MovingWindowRateLimiter
from limits.storage import storage_from_string

from .log import TaggedLogger

REQUESTS_PER_SECOND = 1
REQUESTS_MEASURE_WINDOW_SECONDS = 60
DELAY_PER_REQUEST_MS = 734

# Hits are counted up to this ceiling; past it the delay stops growing
MAX_TRACKED_REQUESTS = 1000


@dataclass(frozen=True)
class SlowDownInfo:
    limit: int
    used: int
    reset_time: datetime | None
    delay_ms: int

    def headers(self) -> dict[str, str]:
        out = {
            "x-ratelimit-limit": str(self.limit),
            "x-ratelimit-used": str(self.used),
        }
        if self.reset_time is not None:
            out["x-ratelimit-reset"] = self.reset_time.isoformat()
        return out


def storage_uri_for(redis_url: str | None) -> str:
    if not redis_url:
        return "async+memory://"
    return f"async+{redis_url}"


def client_ip(request: Request, trust_proxy: int) -> str:
    """Client address, trusting ``trust_proxy`` hops of ``X-Forwarded-For``."""
    peer = request.client.host if request.client else "unknown"
    if trust_proxy <= 0:
        return peer
    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [peer, *reversed([h.strip() for h in forwarded.split(",") if h.strip()])]
    return hops[min(trust_proxy, len(hops) - 1)]


class SlowDown:
    """Sliding-window slow-down: past ``delay_after`` hits, each request waits longer.

    Requests are never rejected, only delayed, and the delay is an
    ``asyncio.sleep`` so other requests keep flowing.
    """

    def __init__(
        self,
        storage_uri: str = "async+memory://",
        *,
        window_seconds: int = REQUESTS_MEASURE_WINDOW_SECONDS,
        delay_after: int = REQUESTS_PER_SECOND * REQUESTS_MEASURE_WINDOW_SECONDS,
        delay_ms: int = DELAY_PER_REQUEST_MS,
        trust_proxy: int = 1,
    ) -> None:
        self.storage_uri = storage_uri
        self.window_seconds = window_seconds
        self.delay_after = delay_after
        self.delay_ms = delay_ms
        self.trust_proxy = trust_proxy
        self._item = RateLimitItemPerMinute(MAX_TRACKED_REQUESTS, max(1, window_seconds // 60))
        self._storage = storage_from_string(storage_uri)
        self._limiter = MovingWindowRateLimiter(self._storage)

    async def start(self, logger: TaggedLogger) -> None:
        if self.storage_uri.startswith("async+memory"):
            return
        logger.debug("Checking rate limit storage at %s", self.storage_uri)
        if not await self._storage.check():
            raise RuntimeError(f"Rate limit storage at {self.storage_uri} is not reachable")
        logger.info("Connected to rate limit storage at %s", self.storage_uri)

    def delay_for(self, used: int) -> int:
        return max(0, used - self.delay_after) * self.delay_ms

    async def hit(self, key: str) -> SlowDownInfo:
        await self._limiter.hit(self._item, "slow-down", key)
        stats = await self._limiter.get_window_stats(self._item, "slow-down", key)
        used = MAX_TRACKED_REQUESTS - stats.remaining
        reset_time = None
        if stats.reset_time:
            reset_time = datetime.fromtimestamp(stats.reset_time, tz=timezone.utc)
        return SlowDownInfo(
            limit=self.delay_after,
            used=used,
            reset_time=reset_time,
            delay_ms=self.delay_for(used),
        )

    async def __call__(self, request: Request) -> SlowDownInfo:
        info = await self.hit(client_ip(request, self.trust_proxy))
        if info.delay_ms:
            await asyncio.sleep(info.delay_ms / 1000)
        return info
