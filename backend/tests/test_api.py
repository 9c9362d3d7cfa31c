"""
HTTP-level tests: authentication, error bodies and a full rental over the API.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from rental_engine.core.clock import utcnow
from rental_engine.core.security import create_access_token


def booking_body(vehicle_id: str, days: int = 3, **extra) -> dict:
    pickup = utcnow() + timedelta(days=1)
    body = {
        "vehicle_id": vehicle_id,
        "pickup_date": pickup.isoformat(),
        "return_date": (pickup + timedelta(days=days)).isoformat(),
        "pickup_location": "Downtown Depot",
    }
    body.update(extra)
    return body


@pytest.mark.asyncio
async def test_requires_bearer_token(client, vehicle):
    response = await client.post("/api/v1/bookings/", json=booking_body(vehicle.id))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rejects_garbage_token(client, vehicle):
    response = await client.post(
        "/api/v1/bookings/", json=booking_body(vehicle.id), headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_booking(client, auth_headers, renter, vehicle, verified_driver):
    response = await client.post(
        "/api/v1/bookings/",
        json=booking_body(vehicle.id, driver_id=verified_driver.id),
        headers=auth_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["user_id"] == renter.id
    assert data["status"] == "pending_payment"
    assert data["rental_days"] == 3
    assert Decimal(data["total_price"]) == Decimal("324.00")
    assert [h["status"] for h in data["status_history"]] == ["pending_payment"]
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_unknown_vehicle_is_404(client, auth_headers):
    response = await client.post("/api/v1/bookings/", json=booking_body("no-such-car"), headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "vehicle_not_found"


@pytest.mark.asyncio
async def test_reversed_dates_are_400(client, auth_headers, vehicle):
    body = booking_body(vehicle.id)
    body["return_date"], body["pickup_date"] = body["pickup_date"], body["return_date"]

    response = await client.post("/api/v1/bookings/", json=body, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_date_range"


@pytest.mark.asyncio
async def test_single_document_is_400(client, auth_headers, vehicle):
    body = booking_body(vehicle.id, license_file_url="https://files.example.com/l.pdf")
    response = await client.post("/api/v1/bookings/", json=body, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "missing_driver_documents"


@pytest.mark.asyncio
async def test_unknown_booking_is_404(client, auth_headers):
    response = await client.get("/api/v1/bookings/nope", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "booking_not_found"


@pytest.mark.asyncio
async def test_accept_race_over_http(client, fleet_headers, open_request, online_pro_drivers):
    first, second = online_pro_drivers[:2]

    listed = await client.get("/api/v1/drivers/requests", headers=fleet_headers)
    assert [r["booking_id"] for r in listed.json()] == [open_request.id]

    won = await client.post(
        f"/api/v1/drivers/{first.id}/requests/{open_request.id}/accept", headers=fleet_headers
    )
    lost = await client.post(
        f"/api/v1/drivers/{second.id}/requests/{open_request.id}/accept", headers=fleet_headers
    )

    assert won.status_code == 200
    assert won.json() == {"booking_id": open_request.id, "driver_id": first.id, "status": "pending_payment"}
    assert lost.status_code == 409
    assert lost.json()["error"] == "already_assigned"

    listed = await client.get("/api/v1/drivers/requests", headers=fleet_headers)
    assert listed.json() == []


@pytest.mark.asyncio
async def test_cannot_accept_for_someone_elses_driver(client, auth_headers, open_request, online_pro_drivers):
    response = await client.post(
        f"/api/v1/drivers/{online_pro_drivers[0].id}/requests/{open_request.id}/accept", headers=auth_headers
    )
    assert response.status_code == 404
    assert response.json()["error"] == "driver_not_found"

    listed = await client.get("/api/v1/drivers/requests", headers=auth_headers)
    assert [r["booking_id"] for r in listed.json()] == [open_request.id]


@pytest.mark.asyncio
async def test_reschedule_over_http(client, auth_headers, vehicle):
    created = await client.post("/api/v1/bookings/", json=booking_body(vehicle.id), headers=auth_headers)
    booking = created.json()
    pickup = utcnow() + timedelta(days=5)

    response = await client.patch(
        f"/api/v1/bookings/{booking['id']}",
        json={"pickup_date": pickup.isoformat(), "return_date": (pickup + timedelta(days=5)).isoformat()},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["rental_days"] == 5
    assert Decimal(response.json()["total_price"]) == Decimal("540.00")

    response = await client.patch(
        f"/api/v1/bookings/{booking['id']}",
        json={"return_date": (pickup - timedelta(days=1)).isoformat()},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_date_range"


@pytest.mark.asyncio
async def test_presence_endpoints(client, auth_headers, presence):
    response = await client.post("/api/v1/drivers/d-42/online", headers=auth_headers)
    assert response.json() == {"driver_id": "d-42", "online": True}
    assert "d-42" in await presence.online_drivers()

    response = await client.post("/api/v1/drivers/d-42/offline", headers=auth_headers)
    assert response.json() == {"driver_id": "d-42", "online": False}
    assert "d-42" not in await presence.online_drivers()


@pytest.mark.asyncio
async def test_full_rental_lifecycle(client, auth_headers, renter, vehicle):
    pickup = utcnow() - timedelta(hours=1)
    created = await client.post(
        "/api/v1/bookings/",
        json={
            "vehicle_id": vehicle.id,
            "pickup_date": pickup.isoformat(),
            "return_date": (pickup + timedelta(days=3)).isoformat(),
            "pickup_location": "Downtown Depot",
            "license_file_url": "https://files.example.com/l.pdf",
            "insurance_file_url": "https://files.example.com/i.pdf",
            "driver_name": "Rita Renter",
        },
        headers=auth_headers,
    )
    assert created.status_code == 201
    booking = created.json()
    assert booking["status"] == "verification_pending"
    booking_id = booking["id"]

    admin_headers = {"Authorization": f"Bearer {create_access_token(data={'sub': 'admin-1'})}"}
    reviewed = await client.post(
        f"/api/v1/drivers/{booking['driver_id']}/verification",
        json={"license_verified": True, "insurance_verified": True},
        headers=admin_headers,
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["bookings_moved"] == [booking_id]

    session = await client.post(
        f"/api/v1/bookings/{booking_id}/payment-session", json={"session_id": "cs_live_1"}, headers=auth_headers
    )
    assert session.status_code == 200

    paid = await client.post(
        "/api/v1/webhooks/stripe",
        json={"type": "checkout.session.completed", "data": {"object": {"id": "cs_live_1"}}},
    )
    assert paid.json()["status"] == "confirmed"

    checked_in = await client.post(
        f"/api/v1/bookings/{booking_id}/check-in",
        json={"odometer": 1000, "fuel_level": 100, "images": ["front.jpg"]},
        headers=admin_headers,
    )
    assert checked_in.status_code == 200
    assert checked_in.json()["status"] == "active"

    checked_out = await client.post(
        f"/api/v1/bookings/{booking_id}/check-out",
        json={"odometer": 1250, "fuel_level": 80, "cleaning_required": False},
        headers=admin_headers,
    )
    assert checked_out.status_code == 200
    result = checked_out.json()
    assert result["booking"]["status"] == "completed"
    assert Decimal(result["settlement"]["total_additional"]) == Decimal("137.20")
    assert Decimal(result["booking"]["total_charges"]) == Decimal("461.20")
    assert [h["status"] for h in result["booking"]["status_history"]] == [
        "verification_pending",
        "pending_payment",
        "confirmed",
        "active",
        "completed",
    ]

    listed = await client.get("/api/v1/bookings/", headers=auth_headers)
    assert [b["id"] for b in listed.json()] == [booking_id]


@pytest.mark.asyncio
async def test_cancel_over_http(client, auth_headers, vehicle):
    created = await client.post("/api/v1/bookings/", json=booking_body(vehicle.id), headers=auth_headers)
    booking_id = created.json()["id"]

    response = await client.post(
        f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Plans changed"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "Plans changed"

    # Cancelled is terminal
    response = await client.post(
        f"/api/v1/bookings/{booking_id}/status", json={"status": "no_show"}, headers=auth_headers
    )
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "booking_transitions_total" in response.text
