"""
cache.py

Cache-aside helpers over Redis. Every helper fails open: a Redis outage
degrades to calling the fetcher directly.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cinetrack.core.redis_client import get_redis

logger = logging.getLogger(__name__)


async def cache_get(key: str) -> Optional[Any]:
    try:
        raw = await get_redis().get(key)
    except Exception as e:
        logger.warning(f"Cache read failed for {key}: {e}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


async def cache_set(key: str, value: Any, ttl: int) -> None:
    try:
        await get_redis().set(key, json.dumps(value, default=str), ex=ttl)
    except Exception as e:
        logger.warning(f"Cache write failed for {key}: {e}")


async def with_cache(key: str, fetcher: Callable[[], Awaitable[Any]], ttl: int) -> Any:
    """Return the cached value for ``key`` or compute, store and return it.

    ``None`` results are not cached so a failed upstream fetch is retried
    on the next call.
    """
    cached = await cache_get(key)
    if cached is not None:
        return cached
    value = await fetcher()
    if value is not None:
        await cache_set(key, value, ttl)
    return value


async def invalidate_cache(pattern: str) -> int:
    """Delete every key matching ``pattern`` (SCAN based). Returns the count."""
    deleted = 0
    try:
        r = get_redis()
        batch = []
        async for key in r.scan_iter(match=pattern, count=100):
            batch.append(key)
            if len(batch) >= 100:
                deleted += await r.delete(*batch)
                batch = []
        if batch:
            deleted += await r.delete(*batch)
    except Exception as e:
        logger.warning(f"Cache invalidation failed for {pattern}: {e}")
        return deleted
    if deleted:
        logger.info(f"Invalidated {deleted} cache keys matching {pattern}")
    return deleted


async def invalidate_user_cache(user_id: int) -> int:
    return await invalidate_cache(f"user:{user_id}:*")
