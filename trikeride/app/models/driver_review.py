"""
Driver rating models.

A passenger rates the driver once per completed trip. ``DriverRating``
keeps each driver's running average so it never has to be recomputed
from the full review history.
"""

from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from trikeride.app.db.session import Base


class DriverReview(Base):
    __tablename__ = "driver_reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # One review per booking
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, unique=True)
    passenger_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    comment = Column(String(500), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DriverReview(booking={self.booking_id}, driver={self.driver_id}, rating={self.rating})>"


class DriverRating(Base):
    __tablename__ = "driver_ratings"

    driver_id = Column(Integer, primary_key=True, autoincrement=False)
    average_rating = Column(Float, nullable=False, default=0.0)
    review_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
