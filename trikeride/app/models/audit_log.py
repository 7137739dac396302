"""
Audit Log Database Model.

Tracks booking lifecycle events for dispute resolution.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from trikeride.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking booking events.

    Events logged:
    - BOOKING_CREATED / BOOKING_CANCELLED
    - BOOKING_CLAIMED / COUNTER_OFFER_MADE
    - OFFER_ACCEPTED / OFFER_DECLINED
    - BOOKING_COMPLETED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_role = Column(String(20), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Booking the action applies to
    booking_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, booking={self.booking_id})>"
