"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Racing acceptances on one ride
  locust -f locustfile.py --tags throughput   # Test browse cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import string
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
LISTING_IDS = []
RACE_LISTING_ID = None
RACE_OWNER_HEADERS = {}
RACE_SEATS = 10

MESSAGE = "Hi! I'd like a seat on this ride, please."
PASSWORD = "loadtest123"


def random_email():
    return f"load_{random.randint(10000, 99999)}_{random.randint(0, 999)}@campus.edu"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def register_and_login(client) -> dict:
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD,
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code == 200:
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return {}


def future_iso(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: the first acceptor creates a {RACE_SEATS}-seat ride to race over")
    print("=" * 60)


class RequesterUser(HttpUser):
    """
    TEST 1a: Many requesters ask for seats on the same ride.

    Requests are not reservations, so every valid one should be 201 until the
    requester already has one pending (409).
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = register_and_login(self.client)

    @tag("concurrency")
    @task
    def request_seats(self):
        if not RACE_LISTING_ID or not self.headers:
            return

        with self.client.post(
            f"/api/v1/listings/{RACE_LISTING_ID}/requests",
            json={
                "message": MESSAGE,
                "contact_method": "load test",
                "quantity": random.randint(1, 3),
            },
            headers=self.headers,
            name="/api/v1/listings/{id}/requests",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: already pending, or not enough seats left
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class AcceptorUser(HttpUser):
    """
    TEST 1b: Several sessions of the same owner accept requests at once.

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT SUM(agreed_quantity) FROM booking_requests
       WHERE listing_id = X AND status = 'accepted';
    Should be <= 10, and listings.remaining_capacity = 10 - that sum.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global RACE_LISTING_ID, RACE_OWNER_HEADERS

        if RACE_LISTING_ID:
            return

        headers = register_and_login(self.client)
        resp = self.client.post(
            "/api/v1/listings/",
            json={
                "kind": "ride",
                "title": "Concurrency test ride",
                "location": "Test",
                "scheduled_at": future_iso(30),
                "capacity": RACE_SEATS,
            },
            headers=headers,
        )
        if resp.status_code == 201 and not RACE_LISTING_ID:
            RACE_OWNER_HEADERS = headers
            RACE_LISTING_ID = resp.json()["id"]
            print(f"\n✓ Created ride {RACE_LISTING_ID} with {RACE_SEATS} seats\n")

    @tag("concurrency")
    @task
    def accept_pending(self):
        if not RACE_LISTING_ID or not RACE_OWNER_HEADERS:
            return

        resp = self.client.get(
            "/api/v1/requests/received",
            params={"status": "pending"},
            headers=RACE_OWNER_HEADERS,
            name="/api/v1/requests/received",
        )
        if resp.status_code != 200 or not resp.json():
            return

        request_id = random.choice(resp.json())["id"]
        with self.client.put(
            f"/api/v1/requests/{request_id}/respond",
            json={"decision": "accept"},
            headers=RACE_OWNER_HEADERS,
            name="/api/v1/requests/{id}/respond",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 409):
                resp.success()  # 409: capacity gone or request already decided
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def browse_cached(self):
        kind = random.choice(["room", "ticket", "ride", "lostfound", None])
        params = {"page": random.randint(1, 5), "page_size": 20}
        if kind:
            params["kind"] = kind
        self.client.get("/api/v1/listings/", params=params, name="/api/v1/listings/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_listing_detail(self):
        if LISTING_IDS:
            self.client.get(f"/api/v1/listings/{random.choice(LISTING_IDS)}", name="/api/v1/listings/{id}")

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
        self.headers = register_and_login(self.client)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_listing(self):
        with self.client.post(
            "/api/v1/listings/999999/requests",
            json={"message": MESSAGE, "contact_method": "x"},
            headers=self.headers,
            name="/api/v1/listings/{id}/requests [missing]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def zero_quantity(self):
        with self.client.post(
            "/api/v1/listings/1/requests",
            json={"message": MESSAGE, "contact_method": "x", "quantity": 0},
            headers=self.headers,
            name="/api/v1/listings/{id}/requests [zero]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (422,))

    @tag("edge")
    @task
    def huge_quantity(self):
        with self.client.post(
            "/api/v1/listings/1/requests",
            json={"message": MESSAGE, "contact_method": "x", "quantity": 999999},
            headers=self.headers,
            name="/api/v1/listings/{id}/requests [huge]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 404, 409, 422))

    @tag("edge")
    @task
    def ride_in_the_past(self):
        with self.client.post(
            "/api/v1/listings/",
            json={"kind": "ride", "title": "Time travel", "scheduled_at": future_iso(-1), "capacity": 2},
            headers=self.headers,
            name="/api/v1/listings/ [past]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (422,))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/listings/",
            data="not json at all",
            headers=self.headers,
            name="/api/v1/listings/ [garbage]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.put(
            "/api/v1/requests/1/respond",
            json={"decision": "accept"},
            name="/api/v1/requests/{id}/respond [no auth]",
            catch_response=True,
        ) as resp:
            self._expect(resp, (401,))


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing
      - Some requests
      - Rare new listings
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = register_and_login(self.client)

    @task(50)
    def browse(self):
        resp = self.client.get("/api/v1/listings/?page=1&page_size=20")
        if resp.status_code == 200:
            for listing in resp.json().get("listings", []):
                if listing["id"] not in LISTING_IDS:
                    LISTING_IDS.append(listing["id"])

    @task(20)
    def view_listing(self):
        if LISTING_IDS:
            self.client.get(f"/api/v1/listings/{random.choice(LISTING_IDS)}", name="/api/v1/listings/{id}")

    @task(10)
    def request_slot(self):
        if LISTING_IDS and self.headers:
            self.client.post(
                f"/api/v1/listings/{random.choice(LISTING_IDS)}/requests",
                json={"message": MESSAGE, "contact_method": "load test", "quantity": 1},
                headers=self.headers,
                name="/api/v1/listings/{id}/requests",
            )

    @task(3)
    def create_listing(self):
        if not self.headers:
            return
        kind = random.choice(["ticket", "ride", "lostfound"])
        body = {"kind": kind, "title": f"{kind} {random.randint(1, 10000)}", "location": "Campus"}
        if kind != "lostfound":
            body["scheduled_at"] = future_iso(random.randint(1, 90))
            body["capacity"] = random.randint(1, 50)
        resp = self.client.post("/api/v1/listings/", json=body, headers=self.headers)
        if resp.status_code == 201:
            LISTING_IDS.append(resp.json()["id"])
