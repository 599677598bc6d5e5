"""
Redis caching service for the public listing browse view.

CACHING STRATEGY
================

What we cache:
  - Browse responses (paginated, JSON-serialized), one key per kind/page/size
  - Key pattern: "listings:browse:kind={kind}&page={page}&size={size}"

Invalidation:
  - Listing created or deleted
  - A request accepted (remaining_capacity and possibly status changed)
  - Sweeper expired at least one listing
  - TTL-based expiry as safety net

  All browse keys share the "listings:browse:" prefix, so invalidation is a
  SCAN + DELETE over a small keyspace.

Single listings and request views are never cached: acceptance decisions and
request inboxes must reflect the live row.

Cache errors are logged and swallowed; the database stays authoritative and a
Redis outage only costs latency.
"""

import json
from typing import Optional

import redis.asyncio as redis
from campus_market.core.config import get_settings
from campus_market.core.logging import get_logger
from campus_market.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

BROWSE_KEY_PREFIX = "listings:browse:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
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


def _make_browse_key(kind: Optional[str], page: int, page_size: int) -> str:
    return f"{BROWSE_KEY_PREFIX}kind={kind or 'all'}&page={page}&size={page_size}"


async def get_cached_listings(kind: Optional[str], page: int, page_size: int) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = _make_browse_key(kind, page, page_size)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_listings(
    kind: Optional[str],
    page: int,
    page_size: int,
    data: dict,
) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_browse_key(kind, page, page_size)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_listing_cache() -> None:
    """Drop every cached browse page."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{BROWSE_KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


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
