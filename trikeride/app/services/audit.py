"""
Booking event trail.

Every state change the registry makes is written here so disputes about
fares or cancellations can be replayed later.
"""

import enum
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from trikeride.app.models.audit_log import AuditLog


class AuditAction(str, enum.Enum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CLAIMED = "BOOKING_CLAIMED"
    COUNTER_OFFER_MADE = "COUNTER_OFFER_MADE"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_DECLINED = "OFFER_DECLINED"
    OFFER_WITHDRAWN = "OFFER_WITHDRAWN"
    DRIVER_RATED = "DRIVER_RATED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_EXPIRED = "BOOKING_EXPIRED"


def _jsonable(value):
    # Fares are Decimals; store them as exact strings
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


async def record_booking_event(
    db: AsyncSession,
    booking_id: int,
    action: AuditAction,
    actor: Optional[dict] = None,
    **details,
) -> AuditLog:
    """
    Append one event for a booking and commit it.

    Args:
        db: Database session
        booking_id: Booking the event belongs to
        action: What happened
        actor: Token claims of the caller, None for events the registry
            raises on its own (expiry)
        **details: Event context; Decimal and datetime values are stringified

    Returns:
        The stored AuditLog row
    """
    event = AuditLog(
        booking_id=booking_id,
        action=action.value,
        actor_id=actor["user_id"] if actor else None,
        actor_role=actor["role"] if actor else None,
        meta_data={key: _jsonable(value) for key, value in details.items()} or None,
    )

    db.add(event)
    await db.commit()
    await db.refresh(event)
    return event


async def get_booking_history(db: AsyncSession, booking_id: int, limit: int = 100) -> List[AuditLog]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.booking_id == booking_id)
        .order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
        .limit(limit)
    )
    return list(result.scalars().all())
