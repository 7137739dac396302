"""
Booking Registry API Tests.

Covers creation, nearby discovery, claim races, negotiation, completion
radius and cancellation through the REST surface.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from trikeride.app.core.jwt import issue_token
from trikeride.app.core.observability import booking_id_from_path
from trikeride.app.models.booking import Booking
from trikeride.app.models.booking_enums import BookingStatus

NEARBY_PARAMS = {"lat": 14.50, "lon": 121.00}
DESTINATION = (14.520, 121.020)


async def _respond(client, headers, booking_id, **payload):
    return await client.post(f"/v1/driver/bookings/{booking_id}/respond", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_health_reports_redis(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == "ok"


@pytest.mark.asyncio
async def test_create_booking(client, passenger_headers, create_booking):
    booking = await create_booking(passenger_headers)

    assert booking["status"] == "pending"
    assert booking["passenger_id"] == 100
    assert booking["driver_id"] is None
    assert booking["agreed_fare"] is None
    assert Decimal(booking["preferred_fare"]) == Decimal("50")
    # pickup (14.505, 121.005) to destination (14.520, 121.020)
    assert 2200 < booking["estimated_distance_m"] < 2400
    assert booking["expires_at"] is not None


@pytest.mark.asyncio
async def test_one_open_booking_per_passenger(client, passenger_headers, create_booking):
    await create_booking(passenger_headers)

    response = await client.post(
        "/v1/bookings",
        json={
            "pickup": {"latitude": 14.505, "longitude": 121.005},
            "destination": {"latitude": 14.52, "longitude": 121.02},
            "preferred_fare": "40",
        },
        headers=passenger_headers,
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_ACTIVE_BOOKING_EXISTS"


@pytest.mark.asyncio
async def test_create_booking_rejects_non_positive_fare(client, passenger_headers):
    response = await client.post(
        "/v1/bookings",
        json={
            "pickup": {"latitude": 14.505, "longitude": 121.005},
            "destination": {"latitude": 14.52, "longitude": 121.02},
            "preferred_fare": "0",
        },
        headers=passenger_headers,
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_role_guards(client, passenger_headers, driver_headers):
    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=passenger_headers)
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"

    response = await client.get("/v1/bookings/mine", headers=driver_headers)
    assert response.status_code == 403

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS)
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_nearby_filters_by_radius(client, passenger_headers, driver_headers, headers_for, create_booking):
    near = await create_booking(passenger_headers)
    # Roughly 11 km north of the driver
    await create_booking(
        headers_for(101, "PASSENGER"),
        pickup={"latitude": 14.60, "longitude": 121.00},
        destination={"latitude": 14.62, "longitude": 121.01},
    )

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=driver_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["bookings"][0]["id"] == near["id"]

    response = await client.get(
        "/v1/driver/bookings/nearby",
        params={**NEARBY_PARAMS, "radius_km": 20},
        headers=driver_headers,
    )
    assert response.json()["count"] == 2


@pytest.mark.asyncio
async def test_accept_claims_booking(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await _respond(client, driver_headers, booking["id"], accept=True)
    assert response.status_code == 200
    claimed = response.json()["booking"]
    assert claimed["status"] == "active"
    assert claimed["driver_id"] == 1
    assert Decimal(claimed["agreed_fare"]) == Decimal("50")
    assert claimed["accepted_at"] is not None

    response = await client.get("/v1/driver/bookings/active", headers=driver_headers)
    assert response.json()["booking"]["id"] == booking["id"]

    # Claimed bookings leave the pool
    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=driver_headers)
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_second_driver_cannot_claim(
    client, passenger_headers, driver_headers, other_driver_headers, create_booking
):
    booking = await create_booking(passenger_headers)

    first = await _respond(client, driver_headers, booking["id"], accept=True)
    assert first.status_code == 200

    second = await _respond(client, other_driver_headers, booking["id"], accept=True)
    assert second.status_code == 409
    assert second.json()["error_code"] == "ERR_BOOKING_CLAIMED"

    details = await client.get(f"/v1/bookings/{booking['id']}", headers=passenger_headers)
    assert details.json()["driver_id"] == 1


@pytest.mark.asyncio
async def test_driver_holds_one_trip(client, passenger_headers, driver_headers, headers_for, create_booking):
    first = await create_booking(passenger_headers)
    second = await create_booking(headers_for(101, "PASSENGER"))

    assert (await _respond(client, driver_headers, first["id"], accept=True)).status_code == 200

    response = await _respond(client, driver_headers, second["id"], accept=True)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_TRIP_IN_PROGRESS"


@pytest.mark.asyncio
async def test_respond_to_unknown_booking(client, driver_headers):
    response = await _respond(client, driver_headers, 9999, accept=True)
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_BOOKING_NOT_FOUND"


@pytest.mark.asyncio
async def test_invalid_counter_offer(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await _respond(client, driver_headers, booking["id"], counter_offer="-5")
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_INVALID_OFFER"

    response = await _respond(client, driver_headers, booking["id"])
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_INVALID_OFFER"


@pytest.mark.asyncio
async def test_expired_booking_returns_gone(client, passenger_headers, driver_headers, create_booking, db_session):
    booking = await create_booking(passenger_headers)
    await db_session.execute(
        update(Booking)
        .where(Booking.id == booking["id"])
        .values(expires_at=datetime.utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=driver_headers)
    assert response.json()["count"] == 0

    response = await _respond(client, driver_headers, booking["id"], accept=True)
    assert response.status_code == 410
    assert response.json()["error_code"] == "ERR_BOOKING_EXPIRED"

    details = await client.get(f"/v1/bookings/{booking['id']}", headers=passenger_headers)
    assert details.json()["status"] == "cancelled"
    assert details.json()["cancelled_by"] == "system"


@pytest.mark.asyncio
async def test_counter_offer_accepted_by_passenger(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await _respond(
        client, driver_headers, booking["id"], counter_offer="65", message="Heavy traffic"
    )
    assert response.status_code == 200
    countered = response.json()["booking"]
    assert countered["status"] == "countered"
    assert countered["agreed_fare"] is None
    assert Decimal(countered["counter_offer"]["amount"]) == Decimal("65")
    assert countered["counter_offer"]["message"] == "Heavy traffic"

    # Still listed for the countering driver while the passenger decides
    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=driver_headers)
    assert [b["status"] for b in response.json()["bookings"]] == ["countered"]

    response = await client.post(
        f"/v1/bookings/{booking['id']}/respond-offer", json={"accepted": True}, headers=passenger_headers
    )
    assert response.status_code == 200
    accepted = response.json()["booking"]
    assert accepted["status"] == "active"
    assert Decimal(accepted["agreed_fare"]) == Decimal("65")

    response = await client.get("/v1/driver/bookings/active", headers=driver_headers)
    assert response.json()["booking"]["id"] == booking["id"]


@pytest.mark.asyncio
async def test_countered_booking_hidden_from_other_drivers(
    client, passenger_headers, driver_headers, other_driver_headers, create_booking
):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], counter_offer="70")

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=other_driver_headers)
    assert response.json()["count"] == 0

    response = await _respond(client, other_driver_headers, booking["id"], accept=True)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_declined_offer_hides_booking_from_driver(
    client, passenger_headers, driver_headers, other_driver_headers, create_booking
):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], counter_offer="80")

    response = await client.post(
        f"/v1/bookings/{booking['id']}/respond-offer", json={"accepted": False}, headers=passenger_headers
    )
    assert response.status_code == 200
    declined = response.json()["booking"]
    assert declined["status"] == "pending"
    assert declined["driver_id"] is None
    assert declined["counter_offer"] is None

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=driver_headers)
    assert response.json()["count"] == 0

    response = await client.get("/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers=other_driver_headers)
    assert [b["id"] for b in response.json()["bookings"]] == [booking["id"]]


@pytest.mark.asyncio
async def test_complete_outside_radius(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], accept=True)

    # 0.005 degrees of latitude is roughly 556 m
    response = await client.post(
        f"/v1/driver/bookings/{booking['id']}/complete",
        json={"driver_lat": DESTINATION[0] - 0.005, "driver_lon": DESTINATION[1]},
        headers=driver_headers,
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "ERR_TOO_FAR"
    assert 540 < body["details"]["distance_m"] < 570
    assert body["details"]["radius_m"] == 300

    details = await client.get(f"/v1/bookings/{booking['id']}", headers=driver_headers)
    assert details.json()["status"] == "active"


@pytest.mark.asyncio
async def test_complete_within_radius(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], accept=True)

    response = await client.post(
        f"/v1/driver/bookings/{booking['id']}/complete",
        json={"driver_lat": DESTINATION[0] - 0.001, "driver_lon": DESTINATION[1]},
        headers=driver_headers,
    )
    assert response.status_code == 200
    completed = response.json()["booking"]
    assert completed["status"] == "completed"
    assert Decimal(completed["agreed_fare"]) == Decimal("50")
    assert completed["completed_at"] is not None

    response = await client.get("/v1/driver/bookings", params={"status": "completed"}, headers=driver_headers)
    assert response.json()["count"] == 1

    history = await client.get(f"/v1/bookings/{booking['id']}/history", headers=driver_headers)
    actions = [event["action"] for event in history.json()["events"]]
    assert "BOOKING_COMPLETED" in actions
    assert "BOOKING_CLAIMED" in actions
    completed_event = next(e for e in history.json()["events"] if e["action"] == "BOOKING_COMPLETED")
    assert completed_event["actor_id"] == 1
    assert completed_event["actor_role"] == "DRIVER"
    assert Decimal(completed_event["metadata"]["agreed_fare"]) == Decimal("50")


@pytest.mark.asyncio
async def test_complete_requires_owner(
    client, passenger_headers, driver_headers, other_driver_headers, create_booking
):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], accept=True)

    response = await client.post(
        f"/v1/driver/bookings/{booking['id']}/complete",
        json={"driver_lat": DESTINATION[0], "driver_lon": DESTINATION[1]},
        headers=other_driver_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_driver_cancels_active_trip(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], accept=True)

    response = await client.post(
        f"/v1/bookings/{booking['id']}/cancel", json={"reason": "Flat tire"}, headers=driver_headers
    )
    assert response.status_code == 200
    cancelled = response.json()["booking"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_by"] == "driver"
    assert cancelled["cancellation_reason"] == "Flat tire"
    assert cancelled["agreed_fare"] is None

    history = await client.get(f"/v1/bookings/{booking['id']}/history", headers=driver_headers)
    event = next(e for e in history.json()["events"] if e["action"] == "BOOKING_CANCELLED")
    assert Decimal(event["metadata"]["agreed_fare"]) == Decimal("50")

    response = await client.post(f"/v1/bookings/{booking['id']}/cancel", headers=driver_headers)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_BOOKING_NOT_ACTIVE"


@pytest.mark.asyncio
async def test_driver_cannot_cancel_pending_booking(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await client.post(f"/v1/bookings/{booking['id']}/cancel", json={}, headers=driver_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_passenger_cancels_and_can_book_again(client, passenger_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await client.post(
        f"/v1/bookings/{booking['id']}/cancel", json={"reason": "Changed plans"}, headers=passenger_headers
    )
    assert response.status_code == 200
    assert response.json()["booking"]["cancelled_by"] == "passenger"

    response = await client.get("/v1/bookings/active", headers=passenger_headers)
    assert response.json()["booking"] is None

    await create_booking(passenger_headers)
    response = await client.get("/v1/bookings/mine", params={"status": "cancelled"}, headers=passenger_headers)
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_unknown_status_filter(client, passenger_headers):
    response = await client.get("/v1/bookings/mine", params={"status": "bogus"}, headers=passenger_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_correlation_id_round_trip(client, passenger_headers, create_booking):
    booking = await create_booking(passenger_headers)

    response = await client.get(
        f"/v1/bookings/{booking['id']}",
        headers={**passenger_headers, "X-Correlation-ID": "trace-123"},
    )
    assert response.headers["X-Correlation-ID"] == "trace-123"
    assert float(response.headers["X-Process-Time"]) >= 0


def test_booking_id_from_path():
    assert booking_id_from_path("/v1/driver/bookings/42/respond") == 42
    assert booking_id_from_path("/v1/bookings/7") == 7
    assert booking_id_from_path("/v1/bookings/mine") is None


@pytest.mark.asyncio
async def test_expired_token_rejected(client):
    token = issue_token(1, "DRIVER", expires_delta=timedelta(seconds=-5))
    response = await client.get(
        "/v1/driver/bookings/nearby", params=NEARBY_PARAMS, headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


async def _complete(client, headers, booking_id):
    return await client.post(
        f"/v1/driver/bookings/{booking_id}/complete",
        json={"driver_lat": DESTINATION[0], "driver_lon": DESTINATION[1]},
        headers=headers,
    )


async def _rate(client, headers, booking_id, **payload):
    return await client.post(f"/v1/bookings/{booking_id}/rate", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_claim_withdraws_driver_counter_offers(
    client, passenger_headers, driver_headers, headers_for, create_booking
):
    countered = await create_booking(passenger_headers)
    claimed = await create_booking(headers_for(101, "PASSENGER"))

    await _respond(client, driver_headers, countered["id"], counter_offer="70")
    response = await _respond(client, driver_headers, claimed["id"], accept=True)
    assert response.status_code == 200

    details = await client.get(f"/v1/bookings/{countered['id']}", headers=passenger_headers)
    assert details.json()["status"] == "pending"
    assert details.json()["driver_id"] is None
    assert details.json()["counter_offer"] is None

    # The passenger can no longer accept the withdrawn offer
    response = await client.post(
        f"/v1/bookings/{countered['id']}/respond-offer", json={"accepted": True}, headers=passenger_headers
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_BOOKING_NOT_ACTIVE"

    response = await client.get(
        "/v1/driver/bookings", params={"status": "active,accepted"}, headers=driver_headers
    )
    assert [b["id"] for b in response.json()["bookings"]] == [claimed["id"]]


@pytest.mark.asyncio
async def test_counter_from_busy_driver_cannot_be_accepted(
    client, passenger_headers, driver_headers, headers_for, create_booking, db_session
):
    countered = await create_booking(passenger_headers)
    claimed = await create_booking(headers_for(101, "PASSENGER"))
    await _respond(client, driver_headers, claimed["id"], accept=True)

    # Offer left over from before the driver took the other trip
    await db_session.execute(
        update(Booking)
        .where(Booking.id == countered["id"])
        .values(status=BookingStatus.COUNTERED, driver_id=1, counter_offer_amount=Decimal("70"))
    )
    await db_session.commit()

    response = await client.post(
        f"/v1/bookings/{countered['id']}/respond-offer", json={"accepted": True}, headers=passenger_headers
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_DRIVER_UNAVAILABLE"

    details = await client.get(f"/v1/bookings/{countered['id']}", headers=passenger_headers)
    assert details.json()["status"] == "countered"
    assert details.json()["agreed_fare"] is None

    response = await client.get(
        "/v1/driver/bookings", params={"status": "active,accepted"}, headers=driver_headers
    )
    assert response.json()["count"] == 1


@pytest.mark.asyncio
async def test_store_holds_one_claimed_booking_per_driver(
    client, passenger_headers, driver_headers, headers_for, create_booking, db_session
):
    first = await create_booking(passenger_headers)
    second = await create_booking(headers_for(101, "PASSENGER"))
    await _respond(client, driver_headers, first["id"], accept=True)

    with pytest.raises(IntegrityError):
        await db_session.execute(
            update(Booking)
            .where(Booking.id == second["id"])
            .values(status=BookingStatus.ACTIVE, driver_id=1, agreed_fare=Decimal("50"))
        )
    await db_session.rollback()


@pytest.mark.asyncio
async def test_busy_driver_cannot_counter(client, passenger_headers, driver_headers, headers_for, create_booking):
    first = await create_booking(passenger_headers)
    second = await create_booking(headers_for(101, "PASSENGER"))
    await _respond(client, driver_headers, first["id"], accept=True)

    response = await _respond(client, driver_headers, second["id"], counter_offer="45")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_TRIP_IN_PROGRESS"

    details = await client.get(f"/v1/bookings/{second['id']}", headers=headers_for(101, "PASSENGER"))
    assert details.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_driver_booking_history_pages(client, driver_headers, headers_for, create_booking):
    ids = []
    for passenger_id in (101, 102, 103):
        booking = await create_booking(headers_for(passenger_id, "PASSENGER"))
        await _respond(client, driver_headers, booking["id"], accept=True)
        await _complete(client, driver_headers, booking["id"])
        ids.append(booking["id"])

    first_page = await client.get("/v1/driver/bookings", params={"limit": 2}, headers=driver_headers)
    second_page = await client.get(
        "/v1/driver/bookings", params={"limit": 2, "offset": 2}, headers=driver_headers
    )

    assert first_page.json()["count"] == 2
    assert second_page.json()["count"] == 1
    listed = [b["id"] for b in first_page.json()["bookings"] + second_page.json()["bookings"]]
    assert sorted(listed) == sorted(ids)

    response = await client.get("/v1/driver/bookings", params={"limit": 0}, headers=driver_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_nearby_across_antimeridian(client, passenger_headers, driver_headers, create_booking):
    booking = await create_booking(
        passenger_headers,
        pickup={"latitude": -16.50, "longitude": -179.99},
        destination={"latitude": -16.52, "longitude": -179.97},
    )

    response = await client.get(
        "/v1/driver/bookings/nearby", params={"lat": -16.50, "lon": 179.99}, headers=driver_headers
    )
    assert [b["id"] for b in response.json()["bookings"]] == [booking["id"]]


@pytest.mark.asyncio
async def test_rate_driver_updates_running_average(
    client, passenger_headers, driver_headers, headers_for, create_booking
):
    first = await create_booking(passenger_headers)
    await _respond(client, driver_headers, first["id"], accept=True)
    await _complete(client, driver_headers, first["id"])

    response = await _rate(client, passenger_headers, first["id"], rating=5, comment="Smooth ride")
    assert response.status_code == 200
    body = response.json()
    assert body["rating"] == 5
    assert body["comment"] == "Smooth ride"
    assert body["driver_rating"] == {"driver_id": 1, "average_rating": 5.0, "review_count": 1}

    other_passenger = headers_for(101, "PASSENGER")
    second = await create_booking(other_passenger)
    await _respond(client, driver_headers, second["id"], accept=True)
    await _complete(client, driver_headers, second["id"])

    response = await _rate(client, other_passenger, second["id"], rating=2)
    assert response.json()["driver_rating"]["average_rating"] == 3.5
    assert response.json()["driver_rating"]["review_count"] == 2


@pytest.mark.asyncio
async def test_rate_driver_rejections(client, passenger_headers, driver_headers, headers_for, create_booking):
    booking = await create_booking(passenger_headers)
    await _respond(client, driver_headers, booking["id"], accept=True)

    response = await _rate(client, passenger_headers, booking["id"], rating=4)
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_NOT_RATEABLE"

    await _complete(client, driver_headers, booking["id"])

    for rating in (0, 6):
        response = await _rate(client, passenger_headers, booking["id"], rating=rating)
        assert response.status_code == 422
        assert response.json()["error_code"] == "ERR_VALIDATION"

    response = await _rate(client, headers_for(101, "PASSENGER"), booking["id"], rating=4)
    assert response.status_code == 404

    assert (await _rate(client, passenger_headers, booking["id"], rating=4)).status_code == 200

    response = await _rate(client, passenger_headers, booking["id"], rating=1)
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_ALREADY_RATED"
