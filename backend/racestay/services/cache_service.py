"""
Redis caching service for property availability calendars.

CACHING STRATEGY
================

What we cache:
  - Availability calendar responses (JSON-serialized lists of dates)
  - Cache key pattern: "availability:{property_id}:{start}:{end}"

Why:
  - Calendars are read on every property page and booking form
  - They change only when a booking is accepted/cancelled or a host edits
    blocked dates

Invalidation strategy:
  - Every availability mutation deletes all keys of that property
    ("availability:{property_id}:*") after the mutation has committed
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

What is NOT cached:
  - reserve()/is_available() checks inside a booking transition always go
    to the database; a stale "available" from cache must never admit a
    double booking

Redis is optional: when disabled or unreachable every function here is a
no-op and reads fall through to the database.
"""

import json
from typing import Optional

import redis.asyncio as redis
from racestay.core.config import get_settings
from racestay.core.logging import get_logger
from racestay.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_calendar_key(property_id: int, start: str, end: str) -> str:
    return f"availability:{property_id}:{start}:{end}"


async def get_cached_calendar(property_id: int, start: str, end: str) -> Optional[list]:
    client = await get_redis()
    if not client:
        return None

    key = _make_calendar_key(property_id, start, end)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_calendar(property_id: int, start: str, end: str, data: list) -> None:
    """Cache a calendar response with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_calendar_key(property_id, start, end)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_calendar(property_id: int) -> None:
    """
    Drop every cached calendar window of one property.
    Uses SCAN to find and delete all keys matching the prefix.
    """
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"availability:{property_id}:*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", property_id=property_id, keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", property_id=property_id, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
