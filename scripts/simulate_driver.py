"""
Driver Simulation Smoke Test.

Runs against a live registry (uvicorn trikeride.app.main:app):
1. Passenger posts a booking near the driver
2. Driver session goes online and finds it
3. Driver accepts, drives along a replayed route and completes inside the radius
"""

import asyncio
import logging
import sys

import httpx

from trikeride.app.clients.booking_registry import HttpBookingRegistry
from trikeride.app.core.config import settings
from trikeride.app.domain.driver_session.session import DriverSession
from trikeride.app.domain.models import Coordinate
from trikeride.app.domain.tracking.sources import ReplayLocationSource
from trikeride.app.domain.tracking.tracker import LocationTracker
from trikeride.app.services.geo import format_distance

BASE_URL = settings.registry_base_url.rsplit("/", 1)[0]
API_URL = settings.registry_base_url

DRIVER_START = Coordinate(14.50, 121.00)
PICKUP = Coordinate(14.505, 121.005)
DESTINATION = Coordinate(14.520, 121.020)
ROUTE = [
    DRIVER_START,
    PICKUP,
    Coordinate(14.510, 121.010),
    Coordinate(14.515, 121.015),
    Coordinate(14.5185, 121.0185),
    DESTINATION,
]


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"FAILURE: {msg}")
    sys.exit(1)


async def issue_token(client: httpx.AsyncClient, user_id: int, role: str) -> str:
    response = await client.post(
        f"{BASE_URL}/auth/test-token",
        params={"user_id": user_id, "username": f"sim_{role.lower()}_{user_id}", "role": role},
    )
    if response.status_code != 200:
        fail(f"Could not mint {role} token: {response.status_code} {response.text}")
    return response.json()["access_token"]


async def post_booking(client: httpx.AsyncClient, token: str) -> int:
    response = await client.post(
        f"{API_URL}/bookings",
        json={
            "pickup": {"latitude": PICKUP.latitude, "longitude": PICKUP.longitude, "address": "Simulated pickup"},
            "destination": {
                "latitude": DESTINATION.latitude,
                "longitude": DESTINATION.longitude,
                "address": "Simulated destination",
            },
            "preferred_fare": "50.00",
        },
        headers={"Authorization": f"Bearer {token}"},
    )
    if response.status_code != 201:
        fail(f"Booking creation failed: {response.status_code} {response.text}")
    return response.json()["booking"]["id"]


async def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    async with httpx.AsyncClient(timeout=settings.registry_timeout_seconds) as client:
        print_step("SETUP", f"Registry at {API_URL}")
        health = await client.get(f"{BASE_URL}/health")
        if health.status_code != 200:
            fail(f"Registry unhealthy: {health.status_code}")

        passenger_token = await issue_token(client, 900, "PASSENGER")
        driver_token = await issue_token(client, 901, "DRIVER")

        booking_id = await post_booking(client, passenger_token)
        print_step("PASSENGER", f"Posted booking {booking_id}")

    source = ReplayLocationSource(ROUTE[:1])
    tracker = LocationTracker(source, interval_seconds=0.5, min_displacement_m=10)

    async with HttpBookingRegistry.connect(driver_token) as registry:
        async with DriverSession(registry, tracker) as session:
            result = await session.start()
            if result.booking is not None:
                fail(f"Driver already holds booking {result.booking.id}")

            result = await session.go_online()
            if not result.success:
                fail(f"Going online failed: {result.error.message}")

            candidates = {c.id: c for c in session.state.nearby_bookings}
            if booking_id not in candidates:
                fail(f"Booking {booking_id} not in nearby list {sorted(candidates)}")
            print_step("DRIVER", f"Found booking {booking_id}, pickup {format_distance(candidates[booking_id].pickup_distance_m)} away")

            result = await session.accept(booking_id)
            if not result.success:
                fail(f"Accept failed: {result.error.message}")
            print_step("DRIVER", f"Accepted at fare {result.booking.agreed_fare}")

            source.push(*ROUTE[1:])
            for _ in range(40):
                await asyncio.sleep(0.5)
                distance = session.state.distance_to_destination
                if distance is not None:
                    print_step("TRIP", f"{format_distance(distance)} to destination")
                if session.can_complete:
                    break

            result = await session.complete_trip()
            if not result.success:
                fail(f"Completion failed: {result.error.message}")
            print_step("DONE", f"Booking {booking_id} completed {format_distance(result.distance_m)} from destination")


if __name__ == "__main__":
    asyncio.run(main())
