"""
Booking-related enumerations.
"""

import enum


class BookingStatus(str, enum.Enum):
    """Booking status enumeration."""
    PENDING = "pending"  # Posted by passenger, visible to nearby drivers
    COUNTERED = "countered"  # Driver proposed another fare, awaiting passenger
    ACCEPTED = "accepted"  # Claimed with an agreed fare
    ACTIVE = "active"  # Trip under way
    COMPLETED = "completed"  # Closed within the completion radius
    CANCELLED = "cancelled"  # Withdrawn by passenger, driver or system


# Statuses in which a single driver owns the booking
CLAIMED_STATUSES = frozenset({BookingStatus.ACCEPTED, BookingStatus.ACTIVE})

# Statuses that carry an agreed fare
FARE_AGREED_STATUSES = frozenset({
    BookingStatus.ACCEPTED,
    BookingStatus.ACTIVE,
    BookingStatus.COMPLETED,
})

# Statuses still visible to drivers looking for work
OPEN_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.COUNTERED})

TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class CancelledBy(str, enum.Enum):
    """Who withdrew a booking."""
    PASSENGER = "passenger"
    DRIVER = "driver"
    SYSTEM = "system"  # Expired before any driver claimed it
