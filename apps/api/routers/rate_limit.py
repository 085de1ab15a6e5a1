"""Fixed-window request quotas for credit-spending endpoints.

Counters live in Redis so every API worker shares them. If Redis is
unreachable the quota is enforced per process instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _quota_subject(request: Request) -> str:
    """Authenticated user when the bearer token verifies, otherwise the client address."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            return f"user:{decode_session_token(token.strip()).user_id}"
        except ValueError:
            pass

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


async def _incr_redis(key: str, window_seconds: int) -> Tuple[int, int]:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        count = await client.incr(key)
        if count == 1:
            await client.expire(key, window_seconds)
        ttl = await client.ttl(key)
    finally:
        await client.aclose()
    return int(count), max(int(ttl), 1)


async def _incr_local(key: str, window_seconds: int) -> Tuple[int, int]:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
    return count, max(int(reset_at - now), 1)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Dependency allowing `limit` calls per `window_seconds` for each user or client."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"adc:rate:{prefix}:{_quota_subject(request)}"
        try:
            count, retry_after = await _incr_redis(key, window_seconds)
        except Exception as exc:
            logger.debug("Redis rate limiter unavailable, using local counters: %s", exc)
            count, retry_after = await _incr_local(key, window_seconds)

        if count > limit:
            logger.warning("rate_limited key=%s count=%s limit=%s", key, count, limit)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again in {retry_after}s.",
                headers={"Retry-After": str(retry_after)},
            )

    return _dependency
