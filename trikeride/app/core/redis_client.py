"""
Redis connection for short-lived per-driver state.

Only declined counter offers live here; the registry keeps working
without Redis, it just stops hiding declined bookings.
"""

import logging

import redis.asyncio as redis
from trikeride.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """FastAPI dependency; tests override it with an in-memory double."""
    return redis_client


async def ping_redis() -> bool:
    """True if Redis answers, reported by ``/health``."""
    try:
        return bool(await redis_client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    await redis_client.aclose()
