"""
Locust Load Test Suite

Users, vehicles and professional drivers are managed outside this service, so
the scenarios run against seeded ids passed through the environment:

  LOAD_RENTER_ID      renter who creates driver requests
  LOAD_VEHICLE_ID     available vehicle
  LOAD_DRIVER_IDS     comma-separated verified professional drivers as
                      driver_id:owner_user_id (the token subject must own the driver)

Tokens are minted with the service's shared secret (SECRET_KEY).

Run scenarios:
  locust -f locustfile.py --tags race        # Drivers racing for the same requests
  locust -f locustfile.py --tags edge        # Bad input
  locust -f locustfile.py                    # All tests
"""

import os
import random
from datetime import datetime, timedelta, timezone

from locust import HttpUser, between, events, tag, task

from rental_engine.core.security import create_access_token

RENTER_ID = os.environ.get("LOAD_RENTER_ID", "")
VEHICLE_ID = os.environ.get("LOAD_VEHICLE_ID", "")
DRIVERS = [tuple(d.split(":", 1)) for d in os.environ.get("LOAD_DRIVER_IDS", "").split(",") if ":" in d]

# Shared state
ACCEPTED: dict[str, str] = {}  # booking id -> winning driver id


def auth_headers(subject: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': subject})}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: renter={RENTER_ID or '-'} vehicle={VEHICLE_ID or '-'} drivers={len(DRIVERS)}")
    print("=" * 60)


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    print(f"\nAccepted requests: {len(ACCEPTED)}")
    print("Verify at most one winner per booking:")
    print("  SELECT id FROM bookings WHERE driver_assigned AND accepted_driver_id IS NULL;  -- expect 0 rows")


class RenterUser(HttpUser):
    """
    Creates bookings that ask for a professional driver.

    Run: locust -f locustfile.py --tags race -u 50 -r 25 --run-time 60s
    """

    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers(RENTER_ID) if RENTER_ID else {}

    @tag("race")
    @task
    def request_driver(self):
        if not self.headers or not VEHICLE_ID:
            return
        pickup = datetime.now(timezone.utc) + timedelta(days=random.randint(1, 30))
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "vehicle_id": VEHICLE_ID,
                "pickup_date": pickup.isoformat(),
                "return_date": (pickup + timedelta(days=random.randint(1, 7))).isoformat(),
                "pickup_location": "Load Test Depot",
                "request_driver": True,
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class DriverUser(HttpUser):
    """
    Every driver polls the open requests and tries to accept the newest one.
    Exactly one accept per booking may return 200; the rest must be 409.
    """

    wait_time = between(0, 0.2)

    def on_start(self):
        self.driver_id, owner_id = random.choice(DRIVERS) if DRIVERS else (None, None)
        self.headers = auth_headers(owner_id) if owner_id else {}
        if self.driver_id:
            self.client.post(f"/api/v1/drivers/{self.driver_id}/online", headers=self.headers)

    @tag("race")
    @task(1)
    def heartbeat(self):
        if self.driver_id:
            self.client.post(
                f"/api/v1/drivers/{self.driver_id}/online",
                headers=self.headers,
                name="/api/v1/drivers/{id}/online",
            )

    @tag("race")
    @task(10)
    def race_for_request(self):
        if not self.driver_id:
            return
        resp = self.client.get("/api/v1/drivers/requests", headers=self.headers)
        if resp.status_code != 200 or not resp.json():
            return
        booking_id = resp.json()[-1]["booking_id"]

        with self.client.post(
            f"/api/v1/drivers/{self.driver_id}/requests/{booking_id}/accept",
            headers=self.headers,
            name="/api/v1/drivers/{id}/requests/{booking_id}/accept",
            catch_response=True,
        ) as accept:
            if accept.status_code == 200:
                winner = ACCEPTED.setdefault(booking_id, self.driver_id)
                if winner != self.driver_id:
                    accept.failure(f"Second winner for {booking_id}")
                else:
                    accept.success()
            elif accept.status_code == 409:
                accept.success()  # Expected: lost the race or request expired
            elif accept.status_code == 503:
                accept.failure("Retries exhausted")
            else:
                accept.failure(f"Unexpected: {accept.status_code}")


class EdgeCaseUser(HttpUser):
    """
    Bad input handling.

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """

    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers(RENTER_ID or "load-test-user")

    @tag("edge")
    @task
    def unknown_vehicle(self):
        pickup = datetime.now(timezone.utc) + timedelta(days=1)
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "vehicle_id": "does-not-exist",
                "pickup_date": pickup.isoformat(),
                "return_date": (pickup + timedelta(days=2)).isoformat(),
                "pickup_location": "Nowhere",
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def reversed_dates(self):
        if not VEHICLE_ID:
            return
        pickup = datetime.now(timezone.utc) + timedelta(days=5)
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "vehicle_id": VEHICLE_ID,
                "pickup_date": pickup.isoformat(),
                "return_date": (pickup - timedelta(days=1)).isoformat(),
                "pickup_location": "Depot",
            },
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 404]:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.get("/api/v1/bookings/", catch_response=True) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
