"""
Nearby booking search for drivers.

A bounding box narrows the candidates in SQL, then the exact great-circle
distance to each pickup decides membership.
"""

from datetime import datetime
from typing import Iterable, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_

from trikeride.app.domain.models import Coordinate
from trikeride.app.models.booking import Booking
from trikeride.app.models.booking_enums import BookingStatus
from trikeride.app.services.geo import bounding_box, haversine_distance, longitude_ranges


async def find_nearby_open_bookings(
    db: AsyncSession,
    driver_id: int,
    center: Coordinate,
    radius_km: float,
    excluded_ids: Iterable[int] = (),
) -> List[Tuple[Booking, float]]:
    """
    Open bookings whose pickup lies within ``radius_km`` of ``center``.

    Pending bookings are visible to every driver. A countered booking is
    only listed for the driver whose offer is awaiting the passenger.

    Returns:
        (booking, pickup distance in meters) pairs, newest booking first
    """
    min_lat, max_lat, min_lon, max_lon = bounding_box(center, radius_km)
    now = datetime.utcnow()

    query = select(Booking).where(
        Booking.pickup_latitude.between(min_lat, max_lat),
        or_(*(
            Booking.pickup_longitude.between(low, high)
            for low, high in longitude_ranges(min_lon, max_lon)
        )),
        or_(
            and_(Booking.status == BookingStatus.PENDING, Booking.expires_at > now),
            and_(Booking.status == BookingStatus.COUNTERED, Booking.driver_id == driver_id),
        ),
    )
    excluded = list(excluded_ids)
    if excluded:
        query = query.where(Booking.id.not_in(excluded))

    result = await db.execute(query.order_by(Booking.created_at.desc(), Booking.id.desc()))

    radius_m = radius_km * 1000.0
    nearby = []
    for booking in result.scalars().all():
        pickup = Coordinate(booking.pickup_latitude, booking.pickup_longitude)
        distance_m = haversine_distance(center, pickup)
        if distance_m <= radius_m:
            nearby.append((booking, distance_m))

    return nearby
