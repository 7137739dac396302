"""
Shared Booking API Endpoints.

Booking details and cancellation for either party.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from trikeride.app.core.exceptions import (
    BookingNotFoundError, BookingNotActiveError, InsufficientPermissionsError
)
from trikeride.app.core.guards import require_any_party
from trikeride.app.db.session import get_db
from trikeride.app.models.booking import Booking
from trikeride.app.models.booking_enums import (
    BookingStatus, CancelledBy, OPEN_STATUSES, CLAIMED_STATUSES, TERMINAL_STATUSES
)
from trikeride.app.models.enums import UserRole
from trikeride.app.schemas.booking import BookingResponse, BookingEnvelope, CancelBookingRequest
from trikeride.app.services.audit import record_booking_event, get_booking_history, AuditAction
from trikeride.app.services.booking_claims import get_booking

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _can_view(booking: Booking, current_user: dict) -> bool:
    role = current_user.get("role")
    user_id = current_user.get("user_id")

    if role == UserRole.ADMIN.value:
        return True
    if role == UserRole.PASSENGER.value:
        return booking.passenger_id == user_id
    # Drivers see open requests and the bookings they took part in
    return booking.driver_id == user_id or booking.status == BookingStatus.PENDING


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_details(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(require_any_party),
    db: AsyncSession = Depends(get_db)
):
    """
    Booking details for the passenger, the assigned driver, or any driver while pending.
    """
    booking = await get_booking(db, booking_id)
    if not booking or not _can_view(booking, current_user):
        raise BookingNotFoundError(booking_id)

    return BookingResponse.from_model(booking)


@router.post("/{booking_id}/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: int = Path(..., description="Booking ID"),
    payload: Optional[CancelBookingRequest] = Body(None),
    current_user: dict = Depends(require_any_party),
    db: AsyncSession = Depends(get_db)
):
    """
    Cancel a booking.

    Passengers may cancel any open or claimed booking of theirs. Drivers may
    cancel only a booking they hold; withdrawing a counter offer is not a
    cancellation. Admins may cancel anything not yet finished.
    """
    role = current_user["role"]
    user_id = current_user["user_id"]
    reason = payload.reason if payload else ""

    booking = await get_booking(db, booking_id)
    if not booking:
        raise BookingNotFoundError(booking_id)

    if role == UserRole.PASSENGER.value:
        if booking.passenger_id != user_id:
            raise BookingNotFoundError(booking_id)
        cancelled_by = CancelledBy.PASSENGER
        allowed = OPEN_STATUSES | CLAIMED_STATUSES
    elif role == UserRole.DRIVER.value:
        if booking.driver_id != user_id:
            raise BookingNotFoundError(booking_id)
        cancelled_by = CancelledBy.DRIVER
        allowed = CLAIMED_STATUSES
    elif role == UserRole.ADMIN.value:
        cancelled_by = CancelledBy.SYSTEM
        allowed = OPEN_STATUSES | CLAIMED_STATUSES
    else:
        raise InsufficientPermissionsError()

    if booking.status in TERMINAL_STATUSES or booking.status not in allowed:
        raise BookingNotActiveError(
            booking_id, booking.status.value, message="Booking cannot be cancelled"
        )

    # Only accepted, active and completed bookings carry a fare; the audit
    # event keeps what had been agreed
    agreed_fare = booking.agreed_fare
    booking.status = BookingStatus.CANCELLED
    booking.agreed_fare = None
    booking.cancelled_by = cancelled_by
    booking.cancellation_reason = reason
    booking.cancelled_at = datetime.utcnow()

    await db.commit()
    await db.refresh(booking)

    await record_booking_event(
        db, booking_id, AuditAction.BOOKING_CANCELLED, current_user,
        reason=reason, cancelled_by=cancelled_by.value, agreed_fare=agreed_fare,
    )

    return BookingEnvelope(message="Booking cancelled", booking=BookingResponse.from_model(booking))


@router.get("/{booking_id}/history")
async def get_booking_audit_history(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(require_any_party),
    db: AsyncSession = Depends(get_db)
):
    """
    Lifecycle events recorded for a booking, newest first.
    """
    booking = await get_booking(db, booking_id)
    if not booking or not _can_view(booking, current_user):
        raise BookingNotFoundError(booking_id)

    events = await get_booking_history(db, booking_id)

    return {
        "booking_id": booking_id,
        "events": [
            {
                "action": event.action,
                "actor_id": event.actor_id,
                "actor_role": event.actor_role,
                "metadata": event.meta_data,
                "timestamp": event.timestamp,
            }
            for event in events
        ],
    }
