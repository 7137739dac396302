"""
Live location tracking for the driver session.

The tracker samples a ``LocationSource`` on a fixed interval, drops samples
that moved less than the displacement threshold, and hands the rest to a
synchronous callback. Any acquisition failure is reported once as
``LocationUnavailable`` and ends tracking.
"""

import asyncio
import logging
from typing import Callable, Optional

from trikeride.app.core.config import settings
from trikeride.app.domain.errors import LocationUnavailable
from trikeride.app.domain.models import Coordinate
from trikeride.app.domain.tracking.sources import LocationSource
from trikeride.app.services.geo import haversine_distance

logger = logging.getLogger(__name__)

SampleHandler = Callable[[Coordinate], None]
ErrorHandler = Callable[[LocationUnavailable], None]


class LocationTracker:
    """
    Cancellable sampling task over a location source.

    ``start()`` is idempotent and ``stop()`` always releases the source,
    whichever path ends tracking.

    Usage:
        async with LocationTracker(source, on_sample=session.handle_location_sample):
            ...
    """

    def __init__(
        self,
        source: LocationSource,
        on_sample: Optional[SampleHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        interval_seconds: Optional[float] = None,
        min_displacement_m: Optional[float] = None,
    ):
        self.source = source
        self.on_sample = on_sample
        self.on_error = on_error
        self.interval_seconds = (
            settings.location_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.min_displacement_m = (
            settings.location_min_displacement_m if min_displacement_m is None else min_displacement_m
        )
        self.last_sample: Optional[Coordinate] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def current_fix(self) -> Coordinate:
        """
        One-off position read, without starting continuous tracking.

        Raises:
            LocationUnavailable: permission denied or no fix
        """
        await self.source.open()
        try:
            return await self._read()
        finally:
            if not self.is_running:
                await self.source.close()

    def start(self) -> None:
        """Begin sampling. Calling it while already running has no effect."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop sampling and release the sensor subscription."""
        task, self._task = self._task, None
        try:
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            await self.source.close()
            self.last_sample = None

    async def __aenter__(self) -> "LocationTracker":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _read(self) -> Coordinate:
        try:
            return await self.source.current_position()
        except LocationUnavailable:
            raise
        except Exception as e:
            raise LocationUnavailable(f"Location acquisition failed: {e}") from e

    def _moved_enough(self, position: Coordinate) -> bool:
        if self.last_sample is None:
            return True
        return haversine_distance(self.last_sample, position) >= self.min_displacement_m

    async def _run(self) -> None:
        try:
            await self.source.open()
            while True:
                position = await self._read()
                if self._moved_enough(position):
                    self.last_sample = position
                    if self.on_sample is not None:
                        self.on_sample(position)
                await asyncio.sleep(self.interval_seconds)
        except LocationUnavailable as e:
            logger.warning("Location tracking stopped: %s", e.message)
            if self.on_error is not None:
                self.on_error(e)
        finally:
            await self.source.close()
