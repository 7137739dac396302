"""
Passenger Booking API Endpoints.

Passengers post trip requests, answer driver counter offers and rate
drivers once a trip is completed.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Path, Body, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from trikeride.app.core.config import settings
from trikeride.app.core.exceptions import (
    ActiveBookingExistsError, BookingNotFoundError, BookingNotActiveError, DriverUnavailableError,
    NotRateableError, AlreadyRatedError
)
from trikeride.app.core.guards import require_passenger
from trikeride.app.core.redis_client import get_redis
from trikeride.app.db.session import get_db
from trikeride.app.domain.models import Coordinate
from trikeride.app.models.booking import Booking
from trikeride.app.models.booking_enums import BookingStatus, OPEN_STATUSES, CLAIMED_STATUSES
from trikeride.app.schemas.booking import (
    BookingCreate, BookingResponse, BookingEnvelope, ActiveBookingResponse,
    BookingListResponse, OfferDecisionRequest, RateDriverRequest, RatingResponse, DriverRatingOut
)
from trikeride.app.api.v1.params import parse_status_filter
from trikeride.app.services.audit import record_booking_event, AuditAction
from trikeride.app.services.booking_claims import (
    get_booking, accept_counter_offer, decline_counter_offer, count_driver_claimed_bookings
)
from trikeride.app.services.declined_offers import mark_offer_declined
from trikeride.app.services.driver_ratings import add_review, get_driver_rating, get_review_for_booking
from trikeride.app.services.geo import haversine_distance

router = APIRouter(prefix="/bookings", tags=["Passenger - Bookings"])

# A passenger holds at most one booking in these statuses
PASSENGER_OPEN_STATUSES = list(OPEN_STATUSES | CLAIMED_STATUSES)


async def _get_passenger_open_booking(db: AsyncSession, passenger_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(
            Booking.passenger_id == passenger_id,
            Booking.status.in_(PASSENGER_OPEN_STATUSES)
        )
        .order_by(Booking.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingEnvelope)
async def create_booking(
    payload: BookingCreate = Body(...),
    current_user: dict = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """
    Post a trip request (Passenger only).

    Validates:
    - Passenger has no other open booking
    """
    passenger_id = current_user["user_id"]

    existing = await _get_passenger_open_booking(db, passenger_id)
    if existing:
        raise ActiveBookingExistsError(existing.id)

    pickup = Coordinate(payload.pickup.latitude, payload.pickup.longitude)
    destination = Coordinate(payload.destination.latitude, payload.destination.longitude)

    booking = Booking(
        passenger_id=passenger_id,
        pickup_latitude=pickup.latitude,
        pickup_longitude=pickup.longitude,
        pickup_address=payload.pickup.address,
        destination_latitude=destination.latitude,
        destination_longitude=destination.longitude,
        destination_address=payload.destination.address,
        preferred_fare=payload.preferred_fare,
        status=BookingStatus.PENDING,
        estimated_distance_m=round(haversine_distance(pickup, destination)),
        expires_at=datetime.utcnow() + timedelta(minutes=settings.booking_expiry_minutes),
    )

    db.add(booking)
    await db.commit()
    await db.refresh(booking)

    await record_booking_event(
        db, booking.id, AuditAction.BOOKING_CREATED, current_user, preferred_fare=booking.preferred_fare
    )

    return BookingEnvelope(
        message="Booking created successfully",
        booking=BookingResponse.from_model(booking)
    )


@router.get("/mine", response_model=BookingListResponse)
async def list_my_bookings(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """
    Passenger booking history, newest first.
    """
    query = select(Booking).where(Booking.passenger_id == current_user["user_id"])
    statuses = parse_status_filter(status_filter)
    if statuses:
        query = query.where(Booking.status.in_(statuses))

    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(offset).limit(limit)
    )
    bookings = [BookingResponse.from_model(b) for b in result.scalars().all()]

    return BookingListResponse(bookings=bookings, count=len(bookings))


@router.get("/active", response_model=ActiveBookingResponse)
async def get_my_active_booking(
    current_user: dict = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """
    The passenger's open booking (pending, countered or claimed), if any.
    """
    booking = await _get_passenger_open_booking(db, current_user["user_id"])
    if booking is None:
        return ActiveBookingResponse(booking=None)

    return ActiveBookingResponse(booking=BookingResponse.from_model(booking))


@router.post("/{booking_id}/respond-offer", response_model=BookingEnvelope)
async def respond_to_offer(
    booking_id: int = Path(..., description="Booking ID"),
    decision: OfferDecisionRequest = Body(...),
    current_user: dict = Depends(require_passenger),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """
    Accept or decline a driver's counter offer (Passenger only).

    Accepting makes the offered amount the agreed fare and starts the trip,
    unless the driver has meanwhile started another trip (409).
    Declining returns the booking to the pool and hides it from that driver.
    """
    passenger_id = current_user["user_id"]

    booking = await get_booking(db, booking_id)
    if not booking or booking.passenger_id != passenger_id:
        raise BookingNotFoundError(booking_id)

    if booking.status != BookingStatus.COUNTERED:
        raise BookingNotActiveError(
            booking_id, booking.status.value, message="No pending offer to respond to"
        )

    offering_driver_id = booking.driver_id
    offered_amount = booking.counter_offer_amount

    if decision.accepted:
        try:
            applied = await accept_counter_offer(db, booking_id, offering_driver_id)
        except IntegrityError:
            await db.rollback()
            raise DriverUnavailableError(booking_id, offering_driver_id)
        action = AuditAction.OFFER_ACCEPTED
    else:
        applied = await decline_counter_offer(db, booking_id, settings.offer_decline_extension_minutes)
        action = AuditAction.OFFER_DECLINED

    if not applied:
        await db.rollback()
        current = await get_booking(db, booking_id)
        if (
            decision.accepted
            and current.status == BookingStatus.COUNTERED
            and current.driver_id == offering_driver_id
            and await count_driver_claimed_bookings(db, offering_driver_id) > 0
        ):
            raise DriverUnavailableError(booking_id, offering_driver_id)
        raise BookingNotActiveError(booking_id, current.status.value, message="No pending offer to respond to")

    await db.commit()

    if not decision.accepted and offering_driver_id is not None:
        await mark_offer_declined(redis, offering_driver_id, booking_id)

    booking = await get_booking(db, booking_id)

    await record_booking_event(
        db, booking_id, action, current_user, driver_id=offering_driver_id, amount=offered_amount
    )

    return BookingEnvelope(
        message="Offer accepted" if decision.accepted else "Offer declined",
        booking=BookingResponse.from_model(booking)
    )


@router.post("/{booking_id}/rate", response_model=RatingResponse)
async def rate_driver(
    booking_id: int = Path(..., description="Booking ID"),
    payload: RateDriverRequest = Body(...),
    current_user: dict = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """
    Rate the driver of a completed trip (Passenger only).

    Validates:
    - Passenger owns the booking
    - Booking is COMPLETED
    - The trip has not been rated yet
    - Rating is between 1 and 5
    """
    booking = await get_booking(db, booking_id)
    if not booking or booking.passenger_id != current_user["user_id"]:
        raise BookingNotFoundError(booking_id)

    if booking.status != BookingStatus.COMPLETED:
        raise NotRateableError(booking_id, booking.status.value)

    if await get_review_for_booking(db, booking_id) is not None:
        raise AlreadyRatedError(booking_id)

    try:
        review = await add_review(db, booking, payload.rating, payload.comment)
        await db.commit()
    except IntegrityError:
        # Another request rated this trip between the check and the insert
        await db.rollback()
        raise AlreadyRatedError(booking_id)

    summary = await get_driver_rating(db, booking.driver_id)

    await record_booking_event(
        db, booking_id, AuditAction.DRIVER_RATED, current_user,
        driver_id=booking.driver_id, rating=review.rating,
    )

    return RatingResponse(
        message="Rating submitted successfully",
        booking_id=booking_id,
        rating=review.rating,
        comment=review.comment,
        driver_rating=DriverRatingOut(
            driver_id=summary.driver_id,
            average_rating=round(summary.average_rating, 2),
            review_count=summary.review_count,
        ),
    )
