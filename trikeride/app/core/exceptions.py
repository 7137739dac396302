"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class ErrorCode:
    """Error codes shared by the registry API and its clients."""
    BOOKING_NOT_FOUND = "ERR_BOOKING_NOT_FOUND"
    BOOKING_CLAIMED = "ERR_BOOKING_CLAIMED"
    BOOKING_EXPIRED = "ERR_BOOKING_EXPIRED"
    BOOKING_NOT_ACTIVE = "ERR_BOOKING_NOT_ACTIVE"
    ACTIVE_BOOKING_EXISTS = "ERR_ACTIVE_BOOKING_EXISTS"
    INVALID_OFFER = "ERR_INVALID_OFFER"
    TOO_FAR = "ERR_TOO_FAR"
    TRIP_IN_PROGRESS = "ERR_TRIP_IN_PROGRESS"
    DRIVER_UNAVAILABLE = "ERR_DRIVER_UNAVAILABLE"
    NOT_RATEABLE = "ERR_NOT_RATEABLE"
    ALREADY_RATED = "ERR_ALREADY_RATED"
    BAD_REQUEST = "ERR_BAD_REQUEST"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT = "ERR_CONFLICT"
    VALIDATION = "ERR_VALIDATION"
    INTERNAL_SERVER = "ERR_INTERNAL_SERVER"
    UNKNOWN = "ERR_UNKNOWN"


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class BookingNotFoundError(AppException):
    """Raised when a booking does not exist or is not visible to the caller."""

    def __init__(self, booking_id: Any = None):
        message = "Booking not found"
        if booking_id:
            message = f"Booking with ID {booking_id} not found"
        super().__init__(
            message=message,
            error_code=ErrorCode.BOOKING_NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"booking_id": booking_id}
        )


class BookingClaimedError(AppException):
    """Raised when another driver already claimed or countered the booking."""

    def __init__(self, booking_id: int, current_status: str):
        super().__init__(
            message="This booking is no longer available",
            error_code=ErrorCode.BOOKING_CLAIMED,
            status_code=status.HTTP_409_CONFLICT,
            details={"booking_id": booking_id, "status": current_status}
        )


class BookingExpiredError(AppException):
    """Raised when a pending booking passed its expiry time."""

    def __init__(self, booking_id: int):
        super().__init__(
            message="This booking has expired",
            error_code=ErrorCode.BOOKING_EXPIRED,
            status_code=status.HTTP_410_GONE,
            details={"booking_id": booking_id}
        )


class BookingNotActiveError(AppException):
    """Raised when an operation needs a booking state it is not in."""

    def __init__(self, booking_id: int, current_status: str, message: str = None):
        super().__init__(
            message=message or f"Booking cannot be changed in status '{current_status}'",
            error_code=ErrorCode.BOOKING_NOT_ACTIVE,
            status_code=status.HTTP_409_CONFLICT,
            details={"booking_id": booking_id, "status": current_status}
        )


class ActiveBookingExistsError(AppException):
    """Raised when a passenger already has an open booking."""

    def __init__(self, booking_id: int):
        super().__init__(
            message="You already have an active booking",
            error_code=ErrorCode.ACTIVE_BOOKING_EXISTS,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"booking_id": booking_id}
        )


class InvalidOfferError(AppException):
    """Raised when a driver response carries neither an accept nor a valid counter offer."""

    def __init__(self, message: str = "Must accept or provide a positive counter offer"):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_OFFER,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
        )


class TooFarFromDestinationError(AppException):
    """Raised when a completion is attempted outside the completion radius."""

    def __init__(self, distance_m: float, radius_m: float):
        super().__init__(
            message=(
                f"You must be within {round(radius_m)}m of destination to complete. "
                f"Current distance: {round(distance_m)}m"
            ),
            error_code=ErrorCode.TOO_FAR,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"distance_m": distance_m, "radius_m": radius_m}
        )


class TripInProgressError(AppException):
    """Raised when a driver who already holds a trip tries to take or negotiate another."""

    def __init__(self, booking_id: int):
        super().__init__(
            message="You already have an active trip. Complete it before accepting another.",
            error_code=ErrorCode.TRIP_IN_PROGRESS,
            status_code=status.HTTP_409_CONFLICT,
            details={"booking_id": booking_id}
        )


class DriverUnavailableError(AppException):
    """Raised when a passenger accepts a counter offer from a driver who is now on another trip."""

    def __init__(self, booking_id: int, driver_id: int):
        super().__init__(
            message="This driver is on another trip. Decline the offer to return the booking to nearby drivers.",
            error_code=ErrorCode.DRIVER_UNAVAILABLE,
            status_code=status.HTTP_409_CONFLICT,
            details={"booking_id": booking_id, "driver_id": driver_id}
        )


class NotRateableError(AppException):
    """Raised when a rating is submitted for a trip that has not been completed."""

    def __init__(self, booking_id: int, current_status: str):
        super().__init__(
            message="Can only rate completed trips",
            error_code=ErrorCode.NOT_RATEABLE,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"booking_id": booking_id, "status": current_status}
        )


class AlreadyRatedError(AppException):
    """Raised on a second rating for the same trip."""

    def __init__(self, booking_id: int):
        super().__init__(
            message="Trip already rated",
            error_code=ErrorCode.ALREADY_RATED,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"booking_id": booking_id}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: ErrorCode.BAD_REQUEST,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        500: ErrorCode.INTERNAL_SERVER
    }

    error_code = error_code_map.get(exc.status_code, ErrorCode.UNKNOWN)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": ErrorCode.VALIDATION,
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": ErrorCode.INTERNAL_SERVER,
            "message": "An internal server error occurred",
            "details": {}
        }
    )
