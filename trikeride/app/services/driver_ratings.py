"""
Driver rating service.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trikeride.app.models.booking import Booking
from trikeride.app.models.driver_review import DriverReview, DriverRating


async def get_review_for_booking(db: AsyncSession, booking_id: int) -> Optional[DriverReview]:
    result = await db.execute(select(DriverReview).where(DriverReview.booking_id == booking_id))
    return result.scalar_one_or_none()


async def get_driver_rating(db: AsyncSession, driver_id: int) -> Optional[DriverRating]:
    result = await db.execute(
        select(DriverRating)
        .where(DriverRating.driver_id == driver_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def add_review(
    db: AsyncSession,
    booking: Booking,
    rating: int,
    comment: Optional[str] = None
) -> DriverReview:
    """
    Store a passenger's rating of a completed trip and fold it into the
    driver's running average. Flushes but does not commit.

    The average is updated in SQL from the stored values, so two
    passengers rating the same driver at once both count.
    """
    review = DriverReview(
        booking_id=booking.id,
        passenger_id=booking.passenger_id,
        driver_id=booking.driver_id,
        rating=rating,
        comment=comment or "",
    )
    db.add(review)

    result = await db.execute(
        update(DriverRating)
        .where(DriverRating.driver_id == booking.driver_id)
        .values(
            average_rating=(
                DriverRating.average_rating * DriverRating.review_count + rating
            ) / (DriverRating.review_count + 1),
            review_count=DriverRating.review_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(DriverRating(driver_id=booking.driver_id, average_rating=float(rating), review_count=1))

    await db.flush()
    return review
