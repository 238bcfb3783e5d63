"""Per-user audit quotas backed by Redis, with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

QUOTA_WINDOW_SECONDS = 60

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


def quota_key(scope: str, user_id: str) -> str:
    return f"site-audit:quota:{scope}:{user_id}"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


async def _consume_redis_quota(key: str, limit: int, window_seconds: int) -> bool:
    client = _redis_client()
    try:
        current = await client.incr(key)
        if current == 1:
            await client.expire(key, window_seconds)
    finally:
        await client.aclose()
    return current <= limit


async def consume_quota(key: str, limit: int, window_seconds: int = QUOTA_WINDOW_SECONDS) -> bool:
    """Count one use of ``key``; False once the window's ``limit`` is spent."""
    try:
        return await _consume_redis_quota(key, limit, window_seconds)
    except Exception as exc:
        logger.debug("Redis quota unavailable for %s, counting in-process: %s", key, exc)
        return await _consume_local_quota(key, limit, window_seconds)


async def enforce_audit_quota(request: Request, user_id: str) -> None:
    """Reject a new audit when ``user_id`` has started too many this minute."""
    if getattr(request.app.state, "disable_rate_limits", False):
        return
    limit = settings.AUDIT_RATE_LIMIT_PER_MINUTE
    if await consume_quota(quota_key("audit_start", user_id), limit):
        return
    logger.warning("Audit quota of %s per minute exceeded for %s", limit, user_id)
    raise HTTPException(
        status_code=429,
        detail=f"Audit limit of {limit} per minute reached. Try again later.",
        headers={"Retry-After": str(QUOTA_WINDOW_SECONDS)},
    )
