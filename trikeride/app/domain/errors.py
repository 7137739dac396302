"""
Driver core error taxonomy.

Every failure the driver session can meet is one of these. Session
operations return them inside a ``SessionResult`` instead of raising, so
the presentation layer decides how to render each kind.
"""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for driver core errors."""
    error_code = "ERR_BOOKING"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class LocationUnavailable(BookingError):
    """Location permission denied or the sensor failed to produce a fix."""
    error_code = "ERR_LOCATION_UNAVAILABLE"


class LocationRequired(BookingError):
    """An operation needs a position sample and none has arrived yet."""
    error_code = "ERR_LOCATION_REQUIRED"

    def __init__(self, message: str = "Current location is not available yet"):
        super().__init__(message)


class AlreadyClaimed(BookingError):
    """Another driver won the race for this booking."""
    error_code = "ERR_BOOKING_CLAIMED"


class InvalidOffer(BookingError):
    """Counter offer rejected before or by the registry."""
    error_code = "ERR_INVALID_OFFER"


class NotAtDestination(BookingError):
    """Completion attempted outside the completion radius."""
    error_code = "ERR_NOT_AT_DESTINATION"

    def __init__(self, distance_m: Optional[float], radius_m: float):
        self.distance_m = distance_m
        self.radius_m = radius_m
        if distance_m is None:
            message = "Distance to destination is unknown"
        else:
            message = (
                f"You must be within {round(radius_m)}m of the destination to complete the trip. "
                f"Current distance: {round(distance_m)}m"
            )
        super().__init__(message, {"distance_m": distance_m, "radius_m": radius_m})


class TooFar(BookingError):
    """The registry measured the driver outside the completion radius."""
    error_code = "ERR_TOO_FAR"

    def __init__(self, message: str, distance_m: Optional[float] = None, radius_m: Optional[float] = None):
        self.distance_m = distance_m
        self.radius_m = radius_m
        super().__init__(message, {"distance_m": distance_m, "radius_m": radius_m})


class NetworkFailure(BookingError):
    """The registry could not be reached or answered unexpectedly."""
    error_code = "ERR_NETWORK"


class NotActive(BookingError):
    """The registry no longer considers the booking active."""
    error_code = "ERR_BOOKING_NOT_ACTIVE"


class BookingNotFound(BookingError):
    """The registry does not know the booking."""
    error_code = "ERR_BOOKING_NOT_FOUND"


class BookingExpired(BookingNotFound):
    """The booking expired before this driver responded."""
    error_code = "ERR_BOOKING_EXPIRED"


class NoActiveBooking(BookingError):
    """A trip operation was requested with no active booking."""
    error_code = "ERR_NO_ACTIVE_BOOKING"

    def __init__(self, message: str = "No active booking"):
        super().__init__(message)


class SessionOffline(BookingError):
    """A negotiation action was requested while the driver is offline."""
    error_code = "ERR_SESSION_OFFLINE"

    def __init__(self, message: str = "Go online to respond to bookings"):
        super().__init__(message)


class TripInProgress(BookingError):
    """A negotiation action was requested while a trip is already active, locally or on the registry."""
    error_code = "ERR_TRIP_IN_PROGRESS"

    def __init__(
        self,
        message: str = "Finish or cancel the active trip first",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
