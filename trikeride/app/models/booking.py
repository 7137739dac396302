"""
Booking database model.

A booking is a passenger's trip request with pickup, destination and fare.
Drivers claim it directly or negotiate the fare through a counter offer.
"""

from sqlalchemy import Column, Integer, Float, Numeric, String, DateTime, Enum, Index, text
from sqlalchemy.sql import func
from trikeride.app.db.session import Base
from trikeride.app.models.booking_enums import BookingStatus, CancelledBy

CLAIMED_STATUS_SQL = "status IN ('ACCEPTED', 'ACTIVE')"


class Booking(Base):
    """
    Booking model.

    Passenger and driver identities come from the identity provider's
    tokens, so they are stored as plain ids.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parties
    passenger_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=True, index=True)

    # Pickup
    pickup_latitude = Column(Float, nullable=False, index=True)
    pickup_longitude = Column(Float, nullable=False, index=True)
    pickup_address = Column(String(255), nullable=True)

    # Destination
    destination_latitude = Column(Float, nullable=False)
    destination_longitude = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=True)

    # Fares
    preferred_fare = Column(Numeric(10, 2), nullable=False)
    agreed_fare = Column(Numeric(10, 2), nullable=True)

    # Driver counter offer (set while status is COUNTERED)
    counter_offer_amount = Column(Numeric(10, 2), nullable=True)
    counter_offer_message = Column(String(500), nullable=True)
    counter_offered_at = Column(DateTime(timezone=True), nullable=True)

    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)

    # Cancellation
    cancelled_by = Column(Enum(CancelledBy), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    # Pickup to destination great-circle distance
    estimated_distance_m = Column(Integer, nullable=True)

    # Where the driver stood when completing
    completion_latitude = Column(Float, nullable=True)
    completion_longitude = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # A driver owns at most one claimed booking. Enum columns store member names.
    __table_args__ = (
        Index(
            "ix_bookings_one_claim_per_driver", "driver_id", unique=True,
            postgresql_where=text(CLAIMED_STATUS_SQL),
            sqlite_where=text(CLAIMED_STATUS_SQL),
        ),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, passenger_id={self.passenger_id}, status='{self.status.value}')>"
