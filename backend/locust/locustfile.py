"""
Locust Load Test Suite

Tokens are minted locally with the API's SECRET_KEY (the account service is
not part of this deployment). User ids 1..LOAD_USER_COUNT must exist in the
users table. Fleet data comes from the environment:

  LOAD_VEHICLE_ID   vehicle to hammer (default 1)
  LOAD_CAPACITY     its seat capacity (default 40)
  LOAD_TRAVEL_DATE  ISO date to book (default: 30 days from now)
  LOAD_USER_COUNT   distinct user ids to spread bookings over (default 500)

Run scenarios:
  locust -f locustfile.py --tags contention   # Fight over the same few seats
  locust -f locustfile.py --tags throughput   # Availability reads
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
from datetime import datetime, timedelta, timezone

import jwt
from locust import HttpUser, task, between, tag, events

SECRET_KEY = os.environ.get("SECRET_KEY", "super-secret-key-change-in-production")

VEHICLE_ID = int(os.environ.get("LOAD_VEHICLE_ID", 1))
CAPACITY = int(os.environ.get("LOAD_CAPACITY", 40))
TRAVEL_DATE = os.environ.get(
    "LOAD_TRAVEL_DATE",
    (datetime.now(timezone.utc) + timedelta(days=30)).date().isoformat(),
)
USER_COUNT = int(os.environ.get("LOAD_USER_COUNT", 500))

# Seats every ContentionUser competes for
HOT_SEATS = list(range(1, 5))


def auth_headers(role: str = "user") -> dict:
    user_id = random.randint(1, USER_COUNT)
    expire = datetime.now(timezone.utc) + timedelta(hours=1)
    token = jwt.encode(
        {"sub": str(user_id), "role": role, "exp": expire}, SECRET_KEY, algorithm="HS256"
    )
    return {"Authorization": f"Bearer {token}"}


def booking_body(seats) -> dict:
    return {
        "vehicle_id": VEHICLE_ID,
        "seat_numbers": seats,
        "travel_date": TRAVEL_DATE,
        "contact_phone": "9800000000",
        "contact_email": "load@example.com",
        "passenger_names": [f"Load Passenger {s}" for s in seats],
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Vehicle {VEHICLE_ID} ({CAPACITY} seats) on {TRAVEL_DATE}")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many users, four seats

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no seat is held twice:
      SELECT seat_number, COUNT(*) FROM seat_allocations
      WHERE vehicle_id = X AND travel_date = 'D'
      GROUP BY seat_number HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = auth_headers()

    @tag("contention")
    @task
    def book_hot_seats(self):
        seats = random.sample(HOT_SEATS, random.randint(1, 2))
        with self.client.post(
            "/api/v1/bookings/",
            json=booking_body(seats),
            headers=self.headers,
            name="/api/v1/bookings/ [hot seats]",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: somebody else holds a seat
            elif resp.status_code == 503:
                resp.success()  # store busy, client would retry
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - availability reads while bookings land

    Run: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s

    Compare avg response time and P95/P99 with and without ContentionUser load.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def seat_map(self):
        self.client.get(
            "/api/v1/bookings/availability",
            params={"vehicle_id": VEHICLE_ID, "travel_date": TRAVEL_DATE},
            name="/api/v1/bookings/availability",
        )

    @tag("throughput", "read")
    @task(3)
    def check_specific_seats(self):
        seats = random.sample(range(1, CAPACITY + 1), 2)
        self.client.get(
            "/api/v1/bookings/availability",
            params={"vehicle_id": VEHICLE_ID, "travel_date": TRAVEL_DATE, "seats": seats},
            name="/api/v1/bookings/availability?seats",
        )

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = auth_headers()

    def _expect(self, body, expected, name):
        with self.client.post(
            "/api/v1/bookings/", json=body, headers=self.headers, name=name, catch_response=True
        ) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {expected}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_vehicle(self):
        self._expect({**booking_body([1]), "vehicle_id": 999999}, (404,), "edge: unknown vehicle")

    @tag("edge")
    @task
    def seat_beyond_capacity(self):
        self._expect(booking_body([CAPACITY + 1]), (400,), "edge: seat out of range")

    @tag("edge")
    @task
    def too_many_seats(self):
        self._expect(booking_body(list(range(1, 8))), (400,), "edge: seven seats")

    @tag("edge")
    @task
    def duplicate_seats(self):
        self._expect(
            {**booking_body([2]), "seat_numbers": [2, 2], "passenger_names": ["Aa", "Bb"]},
            (400,),
            "edge: duplicate seats",
        )

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            name="edge: malformed",
            catch_response=True,
        ) as resp:
            if resp.status_code in (400, 422):
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json=booking_body([1]),
            name="edge: no auth",
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly seat-map browsing, some bookings, occasional cancellations.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = auth_headers()
        self.slugs = []

    @task(50)
    def browse_seat_map(self):
        self.client.get(
            "/api/v1/bookings/availability",
            params={"vehicle_id": VEHICLE_ID, "travel_date": TRAVEL_DATE},
            name="/api/v1/bookings/availability",
        )

    @task(10)
    def book_free_seats(self):
        resp = self.client.get(
            "/api/v1/bookings/availability",
            params={"vehicle_id": VEHICLE_ID, "travel_date": TRAVEL_DATE},
            name="/api/v1/bookings/availability",
        )
        if resp.status_code != 200:
            return
        free = [s["seat_number"] for s in resp.json()["seat_map"] if s["is_available"]]
        if not free:
            return
        seats = random.sample(free, min(len(free), random.randint(1, 3)))
        with self.client.post(
            "/api/v1/bookings/", json=booking_body(seats), headers=self.headers, catch_response=True
        ) as booked:
            if booked.status_code == 201:
                self.slugs.append(booked.json()["slug"])
                booked.success()
            elif booked.status_code == 409:
                booked.success()  # lost a race between read and write
            else:
                booked.failure(f"Unexpected: {booked.status_code}")

    @task(5)
    def my_bookings(self):
        self.client.get("/api/v1/bookings/my-bookings", headers=self.headers)

    @task(2)
    def cancel_one(self):
        if self.slugs:
            slug = self.slugs.pop()
            self.client.patch(
                f"/api/v1/bookings/{slug}/cancel",
                json={"reason": "Load test"},
                headers=self.headers,
                name="/api/v1/bookings/{slug}/cancel",
            )
