"""
Booking claim service.

Claims and offers are compare-and-set updates guarded on the current
status, so when two drivers respond at once exactly one update matches a
row and the other sees a zero row count. The same updates refuse a
driver who already owns a claimed booking.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func as sql_func
from sqlalchemy.orm import aliased

from trikeride.app.models.booking import Booking
from trikeride.app.models.booking_enums import BookingStatus, CLAIMED_STATUSES, CancelledBy


def as_naive_utc(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC so stored and computed times compare."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def driver_is_free(driver_id: int):
    """
    Condition that holds while a driver owns no claimed booking.

    Used inside the guarded updates so the one-trip-per-driver check and
    the claim happen in a single statement.
    """
    held = aliased(Booking)
    return ~select(held.id).where(
        held.driver_id == driver_id,
        held.status.in_(list(CLAIMED_STATUSES)),
    ).exists()


def is_expired(booking: Booking, now: Optional[datetime] = None) -> bool:
    """True if a still-pending booking passed its expiry time."""
    now = now or datetime.utcnow()
    return booking.status == BookingStatus.PENDING and as_naive_utc(booking.expires_at) <= now


async def get_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    """Load a booking, refreshing any stale copy in the session."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_booking(
    db: AsyncSession,
    booking_id: int,
    driver_id: int
) -> bool:
    """
    Claim a pending booking at the passenger's preferred fare.

    The booking passes through ACCEPTED straight to ACTIVE: the fare is
    agreed and the trip starts in one update.

    Returns:
        True if this driver won the booking, False if it was no longer
        pending or the driver already holds another trip
    """
    now = datetime.utcnow()
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.PENDING,
            Booking.expires_at > now,
            driver_is_free(driver_id),
        )
        .values(
            driver_id=driver_id,
            agreed_fare=Booking.preferred_fare,
            status=BookingStatus.ACTIVE,
            accepted_at=now,
            started_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def record_counter_offer(
    db: AsyncSession,
    booking_id: int,
    driver_id: int,
    amount: Decimal,
    message: Optional[str] = None
) -> bool:
    """
    Attach a driver's counter offer to a pending booking.

    Returns:
        True if recorded, False if the booking was no longer pending or
        the driver is busy with a trip
    """
    now = datetime.utcnow()
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.PENDING,
            Booking.expires_at > now,
            driver_is_free(driver_id),
        )
        .values(
            driver_id=driver_id,
            counter_offer_amount=amount,
            counter_offer_message=message or "",
            counter_offered_at=now,
            status=BookingStatus.COUNTERED,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def accept_counter_offer(db: AsyncSession, booking_id: int, driver_id: int) -> bool:
    """
    Passenger accepts the counter offer: the offered amount becomes the agreed fare.

    Returns:
        True if applied, False if the booking was no longer countered by
        ``driver_id`` or that driver has since started another trip
    """
    now = datetime.utcnow()
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.COUNTERED,
            Booking.driver_id == driver_id,
            driver_is_free(driver_id),
        )
        .values(
            agreed_fare=Booking.counter_offer_amount,
            status=BookingStatus.ACTIVE,
            accepted_at=now,
            started_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def decline_counter_offer(
    db: AsyncSession,
    booking_id: int,
    extension_minutes: int
) -> bool:
    """
    Passenger declines the counter offer: the booking re-enters the pool.

    Expiry is pushed out so other drivers get a chance to respond.
    """
    now = datetime.utcnow()
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.COUNTERED,
        )
        .values(
            driver_id=None,
            counter_offer_amount=None,
            counter_offer_message=None,
            counter_offered_at=None,
            status=BookingStatus.PENDING,
            expires_at=now + timedelta(minutes=extension_minutes),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def withdraw_counter_offers(db: AsyncSession, driver_id: int) -> List[int]:
    """
    Return a driver's outstanding counter offers to the pool.

    Called in the same transaction that hands the driver a trip, so no
    passenger can accept an offer from a driver who is already busy.

    Returns:
        Ids of the bookings that went back to PENDING
    """
    result = await db.execute(
        select(Booking.id).where(
            Booking.driver_id == driver_id,
            Booking.status == BookingStatus.COUNTERED,
        )
    )
    booking_ids = list(result.scalars().all())
    if not booking_ids:
        return []

    await db.execute(
        update(Booking)
        .where(
            Booking.id.in_(booking_ids),
            Booking.driver_id == driver_id,
            Booking.status == BookingStatus.COUNTERED,
        )
        .values(
            driver_id=None,
            counter_offer_amount=None,
            counter_offer_message=None,
            counter_offered_at=None,
            status=BookingStatus.PENDING,
        )
        .execution_options(synchronize_session=False)
    )
    return booking_ids


async def expire_booking(db: AsyncSession, booking: Booking) -> None:
    """Withdraw a pending booking nobody claimed in time."""
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_by = CancelledBy.SYSTEM
    booking.cancellation_reason = "Expired before a driver accepted"
    booking.cancelled_at = datetime.utcnow()
    await db.flush()


async def count_driver_claimed_bookings(
    db: AsyncSession,
    driver_id: int
) -> int:
    """
    Count how many claimed bookings a driver holds.

    Should be 0 or 1 (a driver works one trip at a time).
    """
    result = await db.execute(
        select(sql_func.count(Booking.id)).where(
            Booking.driver_id == driver_id,
            Booking.status.in_(list(CLAIMED_STATUSES))
        )
    )
    return result.scalar()


async def get_driver_active_booking(
    db: AsyncSession,
    driver_id: int
) -> Optional[Booking]:
    """The booking a driver currently owns, if any."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.driver_id == driver_id,
            Booking.status.in_(list(CLAIMED_STATUSES))
        )
        .order_by(Booking.accepted_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_driver_bookings(
    db: AsyncSession,
    driver_id: int,
    statuses: Optional[List[BookingStatus]] = None,
    limit: int = 20,
    offset: int = 0
) -> List[Booking]:
    """Bookings a driver claimed or countered, newest first."""
    query = select(Booking).where(Booking.driver_id == driver_id)
    if statuses:
        query = query.where(Booking.status.in_(statuses))

    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())
