"""
Driver core value types.

These are the in-memory shapes the driver session works with. They are
built from registry responses and never persisted by the core.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from trikeride.app.models.booking_enums import BookingStatus, FARE_AGREED_STATUSES


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 position in degrees."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class CounterOfferTerms:
    """Counter offer as reported by the registry."""
    amount: Decimal
    message: str = ""
    offered_at: Optional[datetime] = None


@dataclass(frozen=True)
class Booking:
    """A passenger trip request as seen by a driver."""
    id: int
    passenger_id: int
    pickup: Coordinate
    destination: Coordinate
    preferred_fare: Decimal
    status: BookingStatus
    agreed_fare: Optional[Decimal] = None
    driver_id: Optional[int] = None
    counter_offer: Optional[CounterOfferTerms] = None
    pickup_address: Optional[str] = None
    destination_address: Optional[str] = None
    estimated_distance_m: Optional[int] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @property
    def fare(self) -> Decimal:
        """Fare the driver collects: the agreed fare once set, the preferred fare before."""
        return self.agreed_fare if self.agreed_fare is not None else self.preferred_fare

    def has_consistent_fare(self) -> bool:
        """agreed_fare is set exactly when the status carries an agreed fare."""
        return (self.agreed_fare is not None) == (self.status in FARE_AGREED_STATUSES)

    def with_status(self, status: BookingStatus) -> "Booking":
        return replace(self, status=status)


@dataclass(frozen=True)
class CounterOffer:
    """A driver's proposed fare, submitted to the registry and then discarded."""
    booking_id: int
    proposed_fare: Decimal
    message: Optional[str] = None


@dataclass(frozen=True)
class NearbyBooking:
    """A nearby candidate paired with the driver's distance to its pickup."""
    booking: Booking
    pickup_distance_m: Optional[float]
    awaiting_passenger: bool = False

    @property
    def id(self) -> int:
        return self.booking.id
