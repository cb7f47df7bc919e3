# Author: Bradley R. Kinnard — shared counters need a shared brain

"""
Async redis connection for the shared rate-limit backend. Lazy, so the memory
backend never opens a socket.
"""

import logging
from redis.asyncio import Redis

from src.criticode.config import settings

log = logging.getLogger(__name__)

_redis: Redis | None = None


async def get_redis() -> Redis:
    """Get or create the pooled connection."""
    global _redis
    if _redis is None:
        log.info(f"connecting to redis at {settings.redis_url}")
        _redis = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    """Called from lifespan on shutdown. No-op if never connected."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
        log.info("redis connection closed")


async def ping_redis() -> str:
    """Health check. 'skipped' when limits live in memory."""
    if settings.rate_limit_backend != "redis":
        return "skipped"
    try:
        r = await get_redis()
        await r.ping()
        return "ok"
    except Exception as e:
        log.warning(f"redis ping failed: {e}")
        return f"error: {e}"
