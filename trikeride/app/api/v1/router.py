"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from trikeride.app.api.v1.endpoints import passenger_bookings, driver_bookings, bookings

router = APIRouter()

# Passenger routes first: "/bookings/mine" and "/bookings/active" must win
# over the shared "/bookings/{booking_id}"
router.include_router(passenger_bookings.router)

# Driver discovery, negotiation and completion
router.include_router(driver_bookings.router)

# Shared details and cancellation
router.include_router(bookings.router)
