"""
Location sources.

A source wraps the device positioning sensor. The sensor itself lives
outside this package; ``ReplayLocationSource`` plays back a recorded or
scripted route for simulations and tests.
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Iterable, Optional

from trikeride.app.domain.errors import LocationUnavailable
from trikeride.app.domain.models import Coordinate


class LocationSource(ABC):
    """Positioning sensor subscription."""

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the sensor subscription.

        Raises:
            LocationUnavailable: permission denied or sensor missing
        """

    @abstractmethod
    async def current_position(self) -> Coordinate:
        """
        Read one position fix.

        Raises:
            LocationUnavailable: no fix could be acquired
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the sensor subscription. Safe to call more than once."""


class ReplayLocationSource(LocationSource):
    """
    Plays back a fixed route, then keeps reporting its last point.

    Usage:
        source = ReplayLocationSource([Coordinate(14.50, 121.00), Coordinate(14.51, 121.01)])
    """

    def __init__(
        self,
        route: Iterable[Coordinate] = (),
        permission_granted: bool = True,
    ):
        self._route = deque(route)
        self._last: Optional[Coordinate] = None
        self.permission_granted = permission_granted
        self.is_open = False
        self.open_count = 0
        self.close_count = 0
        self.failure: Optional[Exception] = None

    def push(self, *points: Coordinate) -> None:
        """Queue more points, e.g. as a simulated driver moves."""
        self._route.extend(points)

    def fail_next(self, error: Exception) -> None:
        """Make the next read raise ``error``."""
        self.failure = error

    async def open(self) -> None:
        if not self.permission_granted:
            raise LocationUnavailable("Location permission denied")
        self.is_open = True
        self.open_count += 1

    async def current_position(self) -> Coordinate:
        if self.failure is not None:
            error, self.failure = self.failure, None
            raise error
        if self._route:
            self._last = self._route.popleft()
        if self._last is None:
            raise LocationUnavailable("No position fix available")
        return self._last

    async def close(self) -> None:
        if self.is_open:
            self.close_count += 1
        self.is_open = False
