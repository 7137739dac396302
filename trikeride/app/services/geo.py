"""
Geographic utility functions.

Great-circle distances for nearby search, pickup display and the
completion radius check.
"""

import math
from typing import List, Tuple

from trikeride.app.domain.models import Coordinate

# Earth's mean radius in meters
EARTH_RADIUS_M = 6371000.0


def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Coordinates are not range-checked; callers pass valid WGS84 degrees.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in meters
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h just outside [0, 1] near antipodes
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_M * c


def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Latitude/longitude box enclosing a circle, for index-friendly pre-filtering.

    Longitudes are not wrapped; pass them through ``longitude_ranges``
    before querying.

    Returns:
        (min_lat, max_lat, min_lon, max_lon)
    """
    angular = (radius_km * 1000.0) / EARTH_RADIUS_M
    lat_delta = math.degrees(angular)
    cos_lat = math.cos(math.radians(center.latitude))
    # Near the poles every longitude is within reach
    lon_delta = 180.0 if cos_lat < 1e-12 else min(180.0, math.degrees(angular) / cos_lat)

    return (
        center.latitude - lat_delta,
        center.latitude + lat_delta,
        center.longitude - lon_delta,
        center.longitude + lon_delta,
    )


def longitude_ranges(min_lon: float, max_lon: float) -> List[Tuple[float, float]]:
    """
    Split a bounding box's longitude span into ranges inside [-180, 180].

    A box centred near the antimeridian reaches past ±180 and is returned
    as two ranges, one on each side.
    """
    if max_lon - min_lon >= 360.0:
        return [(-180.0, 180.0)]
    if min_lon < -180.0:
        return [(min_lon + 360.0, 180.0), (-180.0, max_lon)]
    if max_lon > 180.0:
        return [(min_lon, 180.0), (-180.0, max_lon - 360.0)]
    return [(min_lon, max_lon)]


def format_distance(meters: float) -> str:
    """Render a distance the way drivers read it: "850m" or "1.2km"."""
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
