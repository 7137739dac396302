"""
Negotiation engine.

Per-booking state machine for a driver's side of fare negotiation. Every
transition is requested against the registry and only returned to the
caller once the registry has confirmed it; the engine holds no state.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from trikeride.app.clients.booking_registry import BookingRegistry
from trikeride.app.domain.errors import InvalidOffer, NetworkFailure
from trikeride.app.domain.models import Booking, CounterOffer
from trikeride.app.models.booking_enums import BookingStatus, CLAIMED_STATUSES

logger = logging.getLogger(__name__)

FARE_QUANTUM = Decimal("0.01")


def validate_counter_offer(booking_id: int, proposed_fare: Any, message: Optional[str] = None) -> CounterOffer:
    """
    Check a proposed fare before it goes anywhere near the network.

    Args:
        booking_id: Booking being countered
        proposed_fare: Decimal, int, float or numeric string
        message: Optional note for the passenger

    Returns:
        CounterOffer with the fare rounded to centavos

    Raises:
        InvalidOffer: fare is not a positive finite number
    """
    if isinstance(proposed_fare, bool):
        raise InvalidOffer("Counter offer must be a number", {"proposed_fare": proposed_fare})

    try:
        fare = Decimal(str(proposed_fare).strip())
    except (InvalidOperation, ValueError):
        raise InvalidOffer("Counter offer must be a number", {"proposed_fare": str(proposed_fare)})

    if not fare.is_finite():
        raise InvalidOffer("Counter offer must be a finite amount", {"proposed_fare": str(proposed_fare)})

    fare = fare.quantize(FARE_QUANTUM)
    if fare <= 0:
        raise InvalidOffer("Counter offer must be greater than zero", {"proposed_fare": str(proposed_fare)})

    return CounterOffer(booking_id=booking_id, proposed_fare=fare, message=message or None)


class NegotiationEngine:
    """Driver-initiated transitions: accept and counter."""

    def __init__(self, registry: BookingRegistry):
        self.registry = registry

    async def accept(self, booking_id: int) -> Booking:
        """
        Claim a pending booking at the passenger's preferred fare.

        Raises:
            AlreadyClaimed: another driver won the race
            BookingNotFound: unknown or expired booking
            TripInProgress: the registry already holds a trip for this driver
            NetworkFailure: registry unreachable or inconsistent answer
        """
        booking = await self.registry.respond_to_booking(booking_id, accept=True)
        self._check(booking, booking.status in CLAIMED_STATUSES, "claimed")
        logger.info("Accepted booking %s at fare %s", booking.id, booking.agreed_fare)
        return booking

    async def counter(self, offer: CounterOffer) -> Booking:
        """
        Propose a different fare. The booking waits for the passenger.

        Raises:
            InvalidOffer: rejected by the registry
            AlreadyClaimed: booking no longer pending
            BookingNotFound: unknown or expired booking
            TripInProgress: the registry already holds a trip for this driver
            NetworkFailure: registry unreachable or inconsistent answer
        """
        booking = await self.registry.respond_to_booking(
            offer.booking_id,
            accept=False,
            counter_offer=offer.proposed_fare,
            message=offer.message,
        )
        self._check(booking, booking.status == BookingStatus.COUNTERED, "countered")
        logger.info("Countered booking %s with %s", booking.id, offer.proposed_fare)
        return booking

    @staticmethod
    def _check(booking: Booking, expected: bool, expected_label: str) -> None:
        if not expected:
            raise NetworkFailure(
                f"Registry returned booking {booking.id} as {booking.status.value}, expected {expected_label}",
                {"booking_id": booking.id, "status": booking.status.value},
            )
        if not booking.has_consistent_fare():
            raise NetworkFailure(
                f"Registry returned booking {booking.id} with an inconsistent fare",
                {"booking_id": booking.id, "status": booking.status.value},
            )
