"""
Driver session.

Per-driver orchestrator: online/offline toggle, the nearby-booking poll,
accept and counter actions, the single active booking and the completion
radius check.

Runs on one event loop with two producers, the poll task and the location
tracker. Nothing is locked: every response that awaited the registry is
checked against the online epoch and the active booking before it touches
state, and stale ones are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Union

from trikeride.app.clients.booking_registry import BookingRegistry
from trikeride.app.core.config import settings
from trikeride.app.domain.errors import (
    BookingError, AlreadyClaimed, BookingNotFound, InvalidOffer, LocationRequired,
    LocationUnavailable, NoActiveBooking, NotActive, NotAtDestination,
    SessionOffline, TooFar, TripInProgress
)
from trikeride.app.domain.models import Booking, Coordinate, CounterOffer, NearbyBooking
from trikeride.app.domain.negotiation.engine import NegotiationEngine, validate_counter_offer
from trikeride.app.domain.tracking.tracker import LocationTracker
from trikeride.app.models.booking_enums import BookingStatus, CLAIMED_STATUSES
from trikeride.app.services.geo import haversine_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingCancellation:
    """A cancel the registry never confirmed."""
    booking_id: int
    reason: str


@dataclass
class DriverSessionState:
    """Everything the presentation layer renders for one driver."""
    is_online: bool = False
    current_location: Optional[Coordinate] = None
    nearby_bookings: List[NearbyBooking] = field(default_factory=list)
    active_booking: Optional[Booking] = None
    distance_to_destination: Optional[float] = None
    distance_to_pickup: Optional[float] = None
    pending_offers: Dict[int, CounterOffer] = field(default_factory=dict)
    pending_cancellation: Optional[PendingCancellation] = None
    location_error: Optional[LocationUnavailable] = None


@dataclass
class SessionResult:
    """
    Outcome of a session operation.

    ``stale`` marks a registry answer that arrived after the session moved
    on (went offline, or another booking became active); it was not applied.
    """
    success: bool
    booking: Optional[Booking] = None
    error: Optional[BookingError] = None
    distance_m: Optional[float] = None
    stale: bool = False

    @classmethod
    def ok(cls, booking: Optional[Booking] = None, distance_m: Optional[float] = None) -> "SessionResult":
        return cls(success=True, booking=booking, distance_m=distance_m)

    @classmethod
    def failed(cls, error: BookingError, distance_m: Optional[float] = None) -> "SessionResult":
        return cls(success=False, error=error, distance_m=distance_m)

    @classmethod
    def discarded(cls, booking: Optional[Booking] = None) -> "SessionResult":
        return cls(success=False, booking=booking, stale=True)


class DriverSession:
    """
    One driver's view of the booking lifecycle.

    Usage:
        async with DriverSession(registry, tracker) as session:
            await session.start()
            await session.go_online()
            result = await session.accept(booking_id)
    """

    def __init__(
        self,
        registry: BookingRegistry,
        tracker: LocationTracker,
        engine: Optional[NegotiationEngine] = None,
        search_radius_km: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
        completion_radius_m: Optional[float] = None,
    ):
        self.registry = registry
        self.tracker = tracker
        self.engine = engine or NegotiationEngine(registry)
        self.search_radius_km = settings.search_radius_km if search_radius_km is None else search_radius_km
        self.poll_interval_seconds = (
            settings.poll_interval_seconds if poll_interval_seconds is None else poll_interval_seconds
        )
        self.completion_radius_m = (
            settings.completion_radius_meters if completion_radius_m is None else completion_radius_m
        )

        self.state = DriverSessionState()
        self.tracker.on_sample = self.handle_location_sample
        self.tracker.on_error = self._handle_location_error

        self._poll_task: Optional[asyncio.Task] = None
        # Bumped on every online/offline change; responses from an older epoch are stale
        self._epoch = 0

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def can_complete(self) -> bool:
        distance = self.state.distance_to_destination
        return (
            self.state.active_booking is not None
            and distance is not None
            and distance <= self.completion_radius_m
        )

    async def __aenter__(self) -> "DriverSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Lifecycle

    async def start(self) -> SessionResult:
        """
        Take a first location fix and resume an in-progress trip, if any.

        A resumed trip puts the session online with the tracker running.
        """
        await self._ensure_location()

        try:
            booking = await self.registry.get_active_booking_for_driver()
        except BookingError as e:
            logger.warning("Could not check for an active booking: %s", e.message)
            return SessionResult.failed(e)

        if booking is None or booking.status not in CLAIMED_STATUSES:
            return SessionResult.ok()

        logger.info("Resuming active booking %s", booking.id)
        self.state.is_online = True
        self._epoch += 1
        await self._adopt_active(booking)
        return SessionResult.ok(booking, self.state.distance_to_destination)

    async def go_online(self) -> SessionResult:
        """Fetch nearby bookings right away and keep polling while unmatched."""
        if self.state.is_online:
            return SessionResult.ok()

        self.state.is_online = True
        self._epoch += 1
        logger.info("Driver online")

        if self.state.active_booking is not None:
            return SessionResult.ok(self.state.active_booking)

        await self._ensure_location()
        result = await self.refresh_nearby()
        if self.state.is_online and self.state.active_booking is None:
            self._start_polling()
        return result

    async def go_offline(self) -> SessionResult:
        """Stop polling and forget nearby bookings. An active trip carries on."""
        self.state.is_online = False
        self._epoch += 1
        await self._stop_polling()
        self.state.nearby_bookings = []
        logger.info("Driver offline")
        return SessionResult.ok(self.state.active_booking)

    async def close(self) -> None:
        """Cancel the poll task and release the tracker, whatever happened before."""
        self.state.is_online = False
        self._epoch += 1
        try:
            await self._stop_polling()
        finally:
            await self.tracker.stop()

    # Discovery

    async def refresh_nearby(self) -> SessionResult:
        """
        Fetch bookings within the search radius of the current location.

        Returns:
            SessionResult; failed with LocationRequired when no fix exists yet
        """
        location = self.state.current_location
        if location is None:
            return SessionResult.failed(LocationRequired())
        if self.state.active_booking is not None:
            return SessionResult.ok()

        epoch = self._epoch
        try:
            bookings = await self.registry.list_nearby(location, self.search_radius_km)
        except BookingError as e:
            logger.warning("Nearby fetch failed: %s", e.message)
            return SessionResult.failed(e)

        if not self._still_current(epoch):
            logger.debug("Discarding stale nearby response")
            return SessionResult.discarded()

        self.state.nearby_bookings = [
            NearbyBooking(
                booking=booking,
                pickup_distance_m=haversine_distance(location, booking.pickup),
                awaiting_passenger=booking.status == BookingStatus.COUNTERED,
            )
            for booking in bookings
        ]
        return SessionResult.ok()

    # Negotiation

    async def accept(self, booking_id: int) -> SessionResult:
        """Claim a booking at its preferred fare and start the trip."""
        precondition = self._negotiation_precondition()
        if precondition is not None:
            return SessionResult.failed(precondition)

        epoch = self._epoch
        try:
            booking = await self.engine.accept(booking_id)
        except (AlreadyClaimed, BookingNotFound) as e:
            logger.info("Booking %s no longer available: %s", booking_id, e.message)
            self._drop_candidate(booking_id)
            return SessionResult.failed(e)
        except TripInProgress as e:
            await self._recover_active_trip(epoch)
            return SessionResult.failed(e)
        except BookingError as e:
            return SessionResult.failed(e)

        if not self._still_current(epoch):
            logger.warning("Accept of booking %s confirmed after the session moved on; ignored", booking_id)
            return SessionResult.discarded(booking)

        await self._adopt_active(booking)
        return SessionResult.ok(booking, self.state.distance_to_destination)

    async def counter_offer(
        self,
        booking_id: int,
        fare: Union[Decimal, float, int, str],
        message: Optional[str] = None,
    ) -> SessionResult:
        """Propose a different fare. Polling continues while the passenger decides."""
        try:
            offer = validate_counter_offer(booking_id, fare, message)
        except InvalidOffer as e:
            return SessionResult.failed(e)

        precondition = self._negotiation_precondition()
        if precondition is not None:
            return SessionResult.failed(precondition)

        epoch = self._epoch
        try:
            booking = await self.engine.counter(offer)
        except (AlreadyClaimed, BookingNotFound) as e:
            logger.info("Booking %s no longer available: %s", booking_id, e.message)
            self._drop_candidate(booking_id)
            return SessionResult.failed(e)
        except TripInProgress as e:
            await self._recover_active_trip(epoch)
            return SessionResult.failed(e)
        except BookingError as e:
            return SessionResult.failed(e)

        if not self._still_current(epoch):
            logger.warning("Counter on booking %s confirmed after the session moved on; ignored", booking_id)
            return SessionResult.discarded(booking)

        self.state.pending_offers[booking.id] = offer
        self.state.nearby_bookings = [
            NearbyBooking(booking, candidate.pickup_distance_m, awaiting_passenger=True)
            if candidate.id == booking.id else candidate
            for candidate in self.state.nearby_bookings
        ]
        return SessionResult.ok(booking)

    # Location

    def handle_location_sample(self, position: Coordinate) -> None:
        """Tracker callback. Runs synchronously and never awaits."""
        self.state.current_location = position
        self.state.location_error = None
        self._update_distances()

    def _handle_location_error(self, error: LocationUnavailable) -> None:
        self.state.current_location = None
        self.state.location_error = error
        self._update_distances()

    # Trip

    async def complete_trip(self) -> SessionResult:
        """
        Finalize the active trip. Only allowed within the completion radius.

        Outside it the result carries NotAtDestination and nothing changes.
        """
        booking = self.state.active_booking
        if booking is None:
            return SessionResult.failed(NoActiveBooking())

        distance = self.state.distance_to_destination
        if distance is None or distance > self.completion_radius_m:
            return SessionResult.failed(NotAtDestination(distance, self.completion_radius_m), distance)

        location = self.state.current_location
        try:
            completed = await self.registry.complete_booking(booking.id, location.latitude, location.longitude)
        except TooFar as e:
            return SessionResult.failed(e, e.distance_m if e.distance_m is not None else distance)
        except (NotActive, BookingNotFound) as e:
            logger.warning("Registry no longer has booking %s active: %s", booking.id, e.message)
            if self._is_active(booking.id):
                await self._clear_active()
                await self._resume_polling()
            return SessionResult.failed(e, distance)
        except BookingError as e:
            return SessionResult.failed(e, distance)

        if not self._is_active(booking.id):
            return SessionResult.discarded(completed)

        logger.info("Completed booking %s at %.0fm from destination", booking.id, distance)
        await self._clear_active()
        await self._resume_polling()
        return SessionResult.ok(completed, distance)

    async def cancel_trip(self, reason: str = "") -> SessionResult:
        """
        Withdraw from the active trip.

        Local state is cleared whatever the registry says; an unconfirmed
        cancel is kept in ``pending_cancellation`` for ``retry_cancellation``.
        """
        booking = self.state.active_booking
        if booking is None:
            return SessionResult.failed(NoActiveBooking())

        await self._clear_active()
        result = await self._send_cancellation(PendingCancellation(booking.id, reason))
        await self._resume_polling()
        return result

    async def retry_cancellation(self) -> SessionResult:
        pending = self.state.pending_cancellation
        if pending is None:
            return SessionResult.ok()
        return await self._send_cancellation(pending)

    async def _send_cancellation(self, pending: PendingCancellation) -> SessionResult:
        try:
            cancelled = await self.registry.cancel_booking(pending.booking_id, pending.reason)
        except (NotActive, BookingNotFound) as e:
            # Already closed on the registry side, nothing left to retry
            self.state.pending_cancellation = None
            return SessionResult.failed(e)
        except BookingError as e:
            logger.warning("Cancel of booking %s not confirmed: %s", pending.booking_id, e.message)
            self.state.pending_cancellation = pending
            return SessionResult.failed(e)

        self.state.pending_cancellation = None
        logger.info("Cancelled booking %s", pending.booking_id)
        return SessionResult.ok(cancelled)

    # Internals

    def _still_current(self, epoch: int) -> bool:
        return epoch == self._epoch and self.state.is_online and self.state.active_booking is None

    def _is_active(self, booking_id: int) -> bool:
        return self.state.active_booking is not None and self.state.active_booking.id == booking_id

    def _negotiation_precondition(self) -> Optional[BookingError]:
        if not self.state.is_online:
            return SessionOffline()
        if self.state.active_booking is not None:
            return TripInProgress()
        return None

    def _drop_candidate(self, booking_id: int) -> None:
        if self.state.active_booking is not None:
            return
        self.state.nearby_bookings = [b for b in self.state.nearby_bookings if b.id != booking_id]
        self.state.pending_offers.pop(booking_id, None)

    def _update_distances(self) -> None:
        booking = self.state.active_booking
        location = self.state.current_location
        if booking is None or location is None:
            self.state.distance_to_destination = None
            self.state.distance_to_pickup = None
            return
        self.state.distance_to_destination = haversine_distance(location, booking.destination)
        self.state.distance_to_pickup = haversine_distance(location, booking.pickup)

    async def _ensure_location(self) -> None:
        if self.state.current_location is not None:
            return
        try:
            fix = await self.tracker.current_fix()
        except LocationUnavailable as e:
            logger.warning("No location fix: %s", e.message)
            self._handle_location_error(e)
            return
        self.handle_location_sample(fix)

    async def _adopt_active(self, booking: Booking) -> None:
        # The registry withdraws the driver's other counter offers on a claim
        self.state.active_booking = booking
        self.state.nearby_bookings = []
        self.state.pending_offers.clear()
        self._update_distances()
        await self._stop_polling()
        self.tracker.start()

    async def _recover_active_trip(self, epoch: int) -> None:
        """The registry says this driver already holds a trip; pick it up."""
        try:
            booking = await self.registry.get_active_booking_for_driver()
        except BookingError as e:
            logger.warning("Could not load the trip the registry reports: %s", e.message)
            return
        if not self._still_current(epoch) or booking is None or booking.status not in CLAIMED_STATUSES:
            return
        logger.info("Registry reports booking %s in progress; resuming it", booking.id)
        await self._adopt_active(booking)

    async def _clear_active(self) -> None:
        self.state.active_booking = None
        self._update_distances()
        await self.tracker.stop()

    async def _resume_polling(self) -> None:
        if not self.state.is_online or self.state.active_booking is not None:
            return
        await self.refresh_nearby()
        if self.state.is_online and self.state.active_booking is None:
            self._start_polling()

    def _start_polling(self) -> None:
        if self.is_polling:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task.done():
            return
        # Adoption from inside a poll tick: the loop sees it is no longer registered and exits
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll_loop(self) -> None:
        me = asyncio.current_task()
        while self._poll_task is me:
            await asyncio.sleep(self.poll_interval_seconds)
            if self._poll_task is not me or not self.state.is_online or self.state.active_booking is not None:
                break
            await self._poll_tick()

    async def _poll_tick(self) -> None:
        await self._ensure_location()
        result = await self.refresh_nearby()
        if result.error is not None and not isinstance(result.error, LocationRequired):
            logger.warning("Poll tick failed: %s", result.error.message)
        if self.state.pending_offers:
            await self._check_pending_offers(listed=result.success)

    async def _check_pending_offers(self, listed: bool) -> None:
        """Adopt a counter the passenger accepted; forget ones they declined."""
        epoch = self._epoch
        try:
            active = await self.registry.get_active_booking_for_driver()
        except BookingError as e:
            logger.warning("Could not check pending offers: %s", e.message)
            return

        if not self._still_current(epoch):
            return

        if active is not None and active.status in CLAIMED_STATUSES and active.id in self.state.pending_offers:
            logger.info("Passenger accepted counter offer on booking %s", active.id)
            await self._adopt_active(active)
            return

        if not listed:
            return
        awaiting = {b.id for b in self.state.nearby_bookings if b.awaiting_passenger}
        for booking_id in list(self.state.pending_offers):
            if booking_id not in awaiting:
                logger.info("Counter offer on booking %s was declined or withdrawn", booking_id)
                del self.state.pending_offers[booking_id]
