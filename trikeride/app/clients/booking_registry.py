"""
Booking registry client.

The driver core talks to the registry through the narrow ``BookingRegistry``
interface. ``HttpBookingRegistry`` implements it against the REST API with
a bearer token issued by the identity provider.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type

import httpx

from trikeride.app.core.config import settings
from trikeride.app.core.exceptions import ErrorCode
from trikeride.app.domain.errors import (
    BookingError, AlreadyClaimed, BookingExpired, BookingNotFound,
    InvalidOffer, NetworkFailure, NotActive, TooFar, TripInProgress
)
from trikeride.app.domain.models import Booking, Coordinate, CounterOfferTerms
from trikeride.app.models.booking_enums import BookingStatus

logger = logging.getLogger(__name__)


class BookingRegistry(ABC):
    """
    Server-side holder of booking records, as seen by one driver.

    Every method may raise ``NetworkFailure`` besides the errors it lists.
    """

    @abstractmethod
    async def list_nearby(self, center: Coordinate, radius_km: float) -> List[Booking]:
        """Pending bookings near ``center`` plus this driver's own countered ones."""

    @abstractmethod
    async def respond_to_booking(
        self,
        booking_id: int,
        accept: bool,
        counter_offer: Optional[Decimal] = None,
        message: Optional[str] = None,
    ) -> Booking:
        """Claim or counter. Raises AlreadyClaimed, BookingNotFound, InvalidOffer or TripInProgress."""

    @abstractmethod
    async def complete_booking(self, booking_id: int, driver_lat: float, driver_lon: float) -> Booking:
        """Finalize a trip. Raises TooFar or NotActive."""

    @abstractmethod
    async def cancel_booking(self, booking_id: int, reason: str) -> Booking:
        """Withdraw a claimed booking. Raises BookingNotFound."""

    @abstractmethod
    async def get_active_booking_for_driver(self) -> Optional[Booking]:
        """The booking this driver owns, used to resume after a restart."""


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def booking_from_payload(data: Dict[str, Any]) -> Booking:
    """Build a core ``Booking`` from a registry ``BookingResponse`` body."""
    counter_offer = None
    if data.get("counter_offer"):
        offer = data["counter_offer"]
        counter_offer = CounterOfferTerms(
            amount=_decimal(offer["amount"]),
            message=offer.get("message") or "",
            offered_at=_datetime(offer.get("offered_at")),
        )

    return Booking(
        id=data["id"],
        passenger_id=data["passenger_id"],
        driver_id=data.get("driver_id"),
        pickup=Coordinate(data["pickup"]["latitude"], data["pickup"]["longitude"]),
        destination=Coordinate(data["destination"]["latitude"], data["destination"]["longitude"]),
        pickup_address=data["pickup"].get("address"),
        destination_address=data["destination"].get("address"),
        preferred_fare=_decimal(data["preferred_fare"]),
        agreed_fare=_decimal(data.get("agreed_fare")),
        counter_offer=counter_offer,
        status=BookingStatus(data["status"]),
        estimated_distance_m=data.get("estimated_distance_m"),
        created_at=_datetime(data.get("created_at")),
        expires_at=_datetime(data.get("expires_at")),
    )


# Registry error codes and the core errors they become
_ERROR_MAP: Dict[str, Type[BookingError]] = {
    ErrorCode.BOOKING_CLAIMED: AlreadyClaimed,
    ErrorCode.BOOKING_EXPIRED: BookingExpired,
    ErrorCode.BOOKING_NOT_FOUND: BookingNotFound,
    ErrorCode.NOT_FOUND: BookingNotFound,
    ErrorCode.BOOKING_NOT_ACTIVE: NotActive,
    ErrorCode.INVALID_OFFER: InvalidOffer,
    ErrorCode.TRIP_IN_PROGRESS: TripInProgress,
}


class HttpBookingRegistry(BookingRegistry):
    """
    REST implementation of ``BookingRegistry`` over ``httpx.AsyncClient``.

    Usage:
        async with HttpBookingRegistry.connect(token) as registry:
            bookings = await registry.list_nearby(Coordinate(14.5, 121.0), 5)
    """

    def __init__(self, client: httpx.AsyncClient, token: str):
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"}

    @classmethod
    def connect(
        cls,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> "HttpBookingRegistry":
        client = httpx.AsyncClient(
            base_url=base_url or settings.registry_base_url,
            timeout=timeout or settings.registry_timeout_seconds,
        )
        return cls(client, token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpBookingRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        validation_error: Type[BookingError] = NetworkFailure,
        **kwargs,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Registry %s %s failed: %s", method, path, e)
            raise NetworkFailure(f"Could not reach booking registry: {e}") from e

        if response.is_success:
            return response.json()

        raise self._error_from_response(response, validation_error)

    def _error_from_response(
        self,
        response: httpx.Response,
        validation_error: Type[BookingError],
    ) -> BookingError:
        try:
            body = response.json()
        except ValueError:
            body = {}

        error_code = body.get("error_code")
        message = body.get("message") or f"Registry returned HTTP {response.status_code}"
        details = body.get("details") or {}

        logger.info(
            "Registry rejected %s %s: %s %s",
            response.request.method, response.request.url.path, response.status_code, error_code
        )

        if error_code == ErrorCode.TOO_FAR:
            return TooFar(message, details.get("distance_m"), details.get("radius_m"))
        if error_code == ErrorCode.VALIDATION:
            return validation_error(message, details)

        error_cls = _ERROR_MAP.get(error_code, NetworkFailure)
        return error_cls(message, {"status_code": response.status_code, **details})

    async def list_nearby(self, center: Coordinate, radius_km: float) -> List[Booking]:
        data = await self._request(
            "GET",
            "/driver/bookings/nearby",
            params={"lat": center.latitude, "lon": center.longitude, "radius_km": radius_km},
        )
        return [booking_from_payload(item) for item in data.get("bookings", [])]

    async def respond_to_booking(
        self,
        booking_id: int,
        accept: bool,
        counter_offer: Optional[Decimal] = None,
        message: Optional[str] = None,
    ) -> Booking:
        payload: Dict[str, Any] = {"accept": accept}
        if counter_offer is not None:
            payload["counter_offer"] = str(counter_offer)
        if message:
            payload["message"] = message

        data = await self._request(
            "POST",
            f"/driver/bookings/{booking_id}/respond",
            validation_error=InvalidOffer,
            json=payload,
        )
        return booking_from_payload(data["booking"])

    async def complete_booking(self, booking_id: int, driver_lat: float, driver_lon: float) -> Booking:
        data = await self._request(
            "POST",
            f"/driver/bookings/{booking_id}/complete",
            json={"driver_lat": driver_lat, "driver_lon": driver_lon},
        )
        return booking_from_payload(data["booking"])

    async def cancel_booking(self, booking_id: int, reason: str) -> Booking:
        data = await self._request(
            "POST",
            f"/bookings/{booking_id}/cancel",
            json={"reason": reason},
        )
        return booking_from_payload(data["booking"])

    async def get_active_booking_for_driver(self) -> Optional[Booking]:
        data = await self._request("GET", "/driver/bookings/active")
        if not data.get("booking"):
            return None
        return booking_from_payload(data["booking"])
