"""
Driver Booking API Endpoints.

Drivers discover nearby requests, claim or counter them, and complete
trips from within the completion radius.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Path, Body, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from trikeride.app.core.config import settings
from trikeride.app.core.exceptions import (
    BookingNotFoundError, BookingClaimedError, BookingExpiredError,
    BookingNotActiveError, InvalidOfferError, TooFarFromDestinationError, TripInProgressError
)
from trikeride.app.core.guards import require_driver
from trikeride.app.core.redis_client import get_redis
from trikeride.app.db.session import get_db
from trikeride.app.domain.models import Coordinate
from trikeride.app.models.booking_enums import BookingStatus, CLAIMED_STATUSES
from trikeride.app.schemas.booking import (
    BookingResponse, BookingEnvelope, ActiveBookingResponse, BookingListResponse,
    DriverRespondRequest, CompleteBookingRequest
)
from trikeride.app.api.v1.params import parse_status_filter
from trikeride.app.services.audit import record_booking_event, AuditAction
from trikeride.app.services.booking_claims import (
    get_booking, is_expired, expire_booking, claim_booking, record_counter_offer,
    count_driver_claimed_bookings, get_driver_active_booking, list_driver_bookings,
    withdraw_counter_offers
)
from trikeride.app.services.declined_offers import get_declined_booking_ids
from trikeride.app.services.geo import haversine_distance
from trikeride.app.services.nearby_search import find_nearby_open_bookings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/driver/bookings", tags=["Driver - Bookings"])


@router.get("/nearby", response_model=BookingListResponse)
async def list_nearby_bookings(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.search_radius_km, gt=0, le=50),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """
    Open bookings with a pickup within ``radius_km`` of the driver.

    Bookings whose counter offer from this driver was declined are hidden.
    """
    driver_id = current_user["user_id"]
    declined = await get_declined_booking_ids(redis, driver_id)

    nearby = await find_nearby_open_bookings(
        db,
        driver_id=driver_id,
        center=Coordinate(lat, lon),
        radius_km=radius_km,
        excluded_ids=declined,
    )
    bookings = [BookingResponse.from_model(booking) for booking, _ in nearby]

    return BookingListResponse(bookings=bookings, count=len(bookings))


@router.get("", response_model=BookingListResponse)
async def list_my_driver_bookings(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma-separated statuses"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Bookings this driver claimed or countered, optionally filtered by status.
    """
    statuses = parse_status_filter(status_filter)
    bookings = await list_driver_bookings(
        db, current_user["user_id"], statuses or None, limit=limit, offset=offset
    )

    return BookingListResponse(
        bookings=[BookingResponse.from_model(b) for b in bookings],
        count=len(bookings)
    )


@router.get("/active", response_model=ActiveBookingResponse)
async def get_active_booking_for_driver(
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    The booking this driver currently owns, used to resume after a restart.
    """
    booking = await get_driver_active_booking(db, current_user["user_id"])
    if booking is None:
        return ActiveBookingResponse(booking=None)

    return ActiveBookingResponse(booking=BookingResponse.from_model(booking))


@router.post("/{booking_id}/respond", response_model=BookingEnvelope)
async def respond_to_booking(
    booking_id: int = Path(..., description="Booking ID"),
    payload: DriverRespondRequest = Body(...),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Claim a pending booking or make a counter offer (Driver only).

    Validates:
    - Booking exists and is still PENDING
    - Booking has not expired
    - A counter offer is a positive amount
    - Driver holds no claimed booking

    Concurrent claims are settled by a guarded update: the loser gets 409.
    Claiming withdraws the driver's counter offers on other bookings.
    """
    driver_id = current_user["user_id"]

    booking = await get_booking(db, booking_id)
    if not booking:
        raise BookingNotFoundError(booking_id)

    if is_expired(booking):
        await expire_booking(db, booking)
        await db.commit()
        await record_booking_event(db, booking_id, AuditAction.BOOKING_EXPIRED, expires_at=booking.expires_at)
        raise BookingExpiredError(booking_id)

    if booking.status != BookingStatus.PENDING:
        raise BookingClaimedError(booking_id, booking.status.value)

    counter_offer = payload.counter_offer
    if counter_offer is not None:
        if not counter_offer.is_finite() or counter_offer <= 0:
            raise InvalidOfferError("Counter offer must be a positive amount")
        counter_offer = counter_offer.quantize(Decimal("0.01"))
    elif not payload.accept:
        raise InvalidOfferError("Invalid response. Must accept or provide counter offer.")

    withdrawn = []
    if counter_offer is None:
        try:
            won = await claim_booking(db, booking_id, driver_id)
        except IntegrityError:
            # Another claim by this driver committed between the guard and the write
            await db.rollback()
            raise TripInProgressError(booking_id)
        if won:
            withdrawn = await withdraw_counter_offers(db, driver_id)
        action = AuditAction.BOOKING_CLAIMED
        message = "Booking accepted"
    else:
        won = await record_counter_offer(db, booking_id, driver_id, counter_offer, payload.message)
        action = AuditAction.COUNTER_OFFER_MADE
        message = "Counter offer sent"

    if not won:
        await db.rollback()
        current = await get_booking(db, booking_id)
        if current.status != BookingStatus.PENDING:
            logger.info("Driver %s lost booking %s (now %s)", driver_id, booking_id, current.status.value)
            raise BookingClaimedError(booking_id, current.status.value)
        if await count_driver_claimed_bookings(db, driver_id) > 0:
            raise TripInProgressError(booking_id)
        raise BookingExpiredError(booking_id)

    await db.commit()
    booking = await get_booking(db, booking_id)

    await record_booking_event(
        db, booking_id, action, current_user,
        agreed_fare=booking.agreed_fare,
        counter_offer=counter_offer,
    )
    for withdrawn_id in withdrawn:
        await record_booking_event(
            db, withdrawn_id, AuditAction.OFFER_WITHDRAWN, current_user, claimed_booking_id=booking_id
        )

    return BookingEnvelope(message=message, booking=BookingResponse.from_model(booking))


@router.post("/{booking_id}/complete", response_model=BookingEnvelope)
async def complete_booking(
    booking_id: int = Path(..., description="Booking ID"),
    payload: CompleteBookingRequest = Body(...),
    current_user: dict = Depends(require_driver),
    db: AsyncSession = Depends(get_db)
):
    """
    Complete a trip (Driver only).

    Validates:
    - Driver owns the booking
    - Booking is claimed (accepted or active)
    - Driver stands within the completion radius of the destination
    """
    driver_id = current_user["user_id"]

    booking = await get_booking(db, booking_id)
    if not booking or booking.driver_id != driver_id:
        raise BookingNotFoundError(booking_id)

    if booking.status not in CLAIMED_STATUSES:
        raise BookingNotActiveError(
            booking_id, booking.status.value, message="Trip cannot be completed in current status"
        )

    driver_position = Coordinate(payload.driver_lat, payload.driver_lon)
    destination = Coordinate(booking.destination_latitude, booking.destination_longitude)
    distance_m = haversine_distance(driver_position, destination)

    if distance_m > settings.completion_radius_meters:
        raise TooFarFromDestinationError(distance_m, settings.completion_radius_meters)

    booking.status = BookingStatus.COMPLETED
    booking.completed_at = datetime.utcnow()
    booking.completion_latitude = payload.driver_lat
    booking.completion_longitude = payload.driver_lon

    await db.commit()
    await db.refresh(booking)

    await record_booking_event(
        db, booking_id, AuditAction.BOOKING_COMPLETED, current_user,
        agreed_fare=booking.agreed_fare,
        distance_to_destination_m=round(distance_m, 1),
    )

    return BookingEnvelope(message="Trip completed successfully", booking=BookingResponse.from_model(booking))
