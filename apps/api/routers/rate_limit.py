"""Fixed-window request quotas backed by Redis, with an in-process fallback."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import Request
import redis.asyncio as redis

from config import settings
from errors import RateLimitError

logger = logging.getLogger(__name__)

Identifier = Callable[[Request], str]

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client and request.client.host else "unknown"


def api_key_identifier(request: Request) -> str:
    """Bucket integration calls per key; anonymous calls share the client address."""
    raw_key = request.headers.get("x-api-key") or request.query_params.get("api_key")
    if not raw_key:
        return client_address(request)
    return "key:" + hashlib.sha256(raw_key.encode()).hexdigest()[:16]


async def _redis_hit(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        count = int(await client.incr(key))
        if count == 1:
            await client.expire(key, window_seconds)
        return count
    finally:
        await client.aclose()


async def _local_hit(key: str, window_seconds: int) -> int:
    now = time.monotonic()
    async with _local_lock:
        count, window_ends = _local_counters.get(key, (0, now + window_seconds))
        if now >= window_ends:
            count, window_ends = 0, now + window_seconds
        _local_counters[key] = (count + 1, window_ends)
        return count + 1


def rate_limit(
    prefix: str,
    limit: int,
    window_seconds: int,
    identifier: Optional[Identifier] = None,
) -> Callable[[Request], Awaitable[None]]:
    """Build a dependency allowing `limit` calls per window per identity."""
    identify = identifier or client_address

    async def _dependency(request: Request) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"uidb:rate:{prefix}:{identify(request)}"
        try:
            hits = await _redis_hit(key, window_seconds)
        except Exception as exc:
            logger.debug("Redis rate limit unavailable (%s); counting locally", exc)
            hits = await _local_hit(key, window_seconds)

        if hits > limit:
            raise RateLimitError(
                f"Rate limit exceeded for {prefix}. Try again later.",
                details={"limit": limit, "window_seconds": window_seconds},
            )

    return _dependency
