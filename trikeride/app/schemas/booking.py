"""
Booking schemas for request/response validation.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from trikeride.app.models.booking_enums import BookingStatus, CancelledBy


class LocationIn(BaseModel):
    """A point with optional human-readable address."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)


class BookingCreate(BaseModel):
    """Schema for a passenger posting a trip request."""
    pickup: LocationIn
    destination: LocationIn
    preferred_fare: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class DriverRespondRequest(BaseModel):
    """
    Driver response to a pending booking.

    ``accept`` without ``counter_offer`` claims the booking at the preferred
    fare; a ``counter_offer`` proposes another fare instead.
    """
    accept: bool = False
    counter_offer: Optional[Decimal] = None
    message: Optional[str] = Field(None, max_length=500)


class OfferDecisionRequest(BaseModel):
    """Passenger decision on a driver's counter offer."""
    accepted: bool


class CompleteBookingRequest(BaseModel):
    """Driver position at completion time."""
    driver_lat: float = Field(..., ge=-90, le=90)
    driver_lon: float = Field(..., ge=-180, le=180)


class CancelBookingRequest(BaseModel):
    """Cancellation reason kept for audit."""
    reason: str = Field("", max_length=500)


class LocationOut(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


class CounterOfferOut(BaseModel):
    amount: Decimal
    message: str = ""
    offered_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    """Booking as returned by every registry endpoint."""
    id: int
    passenger_id: int
    driver_id: Optional[int]
    pickup: LocationOut
    destination: LocationOut
    preferred_fare: Decimal
    agreed_fare: Optional[Decimal]
    counter_offer: Optional[CounterOfferOut]
    status: BookingStatus
    cancelled_by: Optional[CancelledBy]
    cancellation_reason: Optional[str]
    estimated_distance_m: Optional[int]
    created_at: Optional[datetime]
    expires_at: Optional[datetime]
    accepted_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    @classmethod
    def from_model(cls, booking) -> "BookingResponse":
        counter_offer = None
        if booking.counter_offer_amount is not None:
            counter_offer = CounterOfferOut(
                amount=booking.counter_offer_amount,
                message=booking.counter_offer_message or "",
                offered_at=booking.counter_offered_at,
            )

        return cls(
            id=booking.id,
            passenger_id=booking.passenger_id,
            driver_id=booking.driver_id,
            pickup=LocationOut(
                latitude=booking.pickup_latitude,
                longitude=booking.pickup_longitude,
                address=booking.pickup_address,
            ),
            destination=LocationOut(
                latitude=booking.destination_latitude,
                longitude=booking.destination_longitude,
                address=booking.destination_address,
            ),
            preferred_fare=booking.preferred_fare,
            agreed_fare=booking.agreed_fare,
            counter_offer=counter_offer,
            status=booking.status,
            cancelled_by=booking.cancelled_by,
            cancellation_reason=booking.cancellation_reason,
            estimated_distance_m=booking.estimated_distance_m,
            created_at=booking.created_at,
            expires_at=booking.expires_at,
            accepted_at=booking.accepted_at,
            started_at=booking.started_at,
            completed_at=booking.completed_at,
            cancelled_at=booking.cancelled_at,
        )


class BookingEnvelope(BaseModel):
    """Single-booking response with a status message."""
    message: str
    booking: BookingResponse


class ActiveBookingResponse(BaseModel):
    """The caller's open booking, if any."""
    booking: Optional[BookingResponse] = None


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    count: int


class RateDriverRequest(BaseModel):
    """Passenger rating of the driver after a completed trip."""
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class DriverRatingOut(BaseModel):
    driver_id: int
    average_rating: float
    review_count: int


class RatingResponse(BaseModel):
    message: str
    booking_id: int
    rating: int
    comment: str
    driver_rating: DriverRatingOut
