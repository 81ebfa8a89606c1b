import hashlib
import json
import logging
from typing import Any

import redis.asyncio as aioredis

logger = logging.getLogger("crawlops.cache")

DEFAULT_TTL = 60


def _cache_key(key: str) -> str:
    # Query strings are user input; keep Redis keys bounded and printable
    return "proxy:" + hashlib.sha256(key.encode()).hexdigest()


async def cache_get(redis: aioredis.Redis, key: str) -> Any | None:
    """Get a cached upstream response. Returns None on miss or error."""
    try:
        raw = await redis.get(_cache_key(key))
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.warning("Cache get error for key=%s: %s", key, e)
        return None


async def cache_set(
    redis: aioredis.Redis, key: str, value: Any, ttl: int = DEFAULT_TTL
) -> None:
    try:
        await redis.set(_cache_key(key), json.dumps(value), ex=ttl)
    except Exception as e:
        logger.warning("Cache set error for key=%s: %s", key, e)
