"""
Declined counter offer tracking using Redis.

When a passenger declines a driver's counter offer the booking returns to
the pool, but that driver should not see it again. Each driver gets a set
of booking ids with a TTL.
"""

import logging
from typing import Set

from trikeride.app.core.config import settings

logger = logging.getLogger(__name__)

# Redis key prefix for per-driver declined bookings
DECLINED_OFFERS_PREFIX = "driver:declined:"


def _key(driver_id: int) -> str:
    return f"{DECLINED_OFFERS_PREFIX}{driver_id}"


async def mark_offer_declined(redis, driver_id: int, booking_id: int) -> bool:
    """
    Remember that a driver's offer on a booking was declined.

    Returns:
        True if recorded, False if Redis is unavailable
    """
    try:
        key = _key(driver_id)
        await redis.sadd(key, str(booking_id))
        await redis.expire(key, settings.declined_offer_ttl_seconds)
        return True
    except Exception as e:
        logger.warning("Could not record declined offer for driver %s: %s", driver_id, e)
        return False


async def get_declined_booking_ids(redis, driver_id: int) -> Set[int]:
    """
    Booking ids hidden from a driver's nearby list.

    Redis outages degrade to no exclusions rather than failing the search.
    """
    try:
        members = await redis.smembers(_key(driver_id))
    except Exception as e:
        logger.warning("Could not read declined offers for driver %s: %s", driver_id, e)
        return set()

    return {int(member) for member in members or ()}
