"""
Locust Load Test Suite

Needs one seeded listing: a host with a property and a bookable race.
Export their ids before running:
  export LOCUST_HOST_ID=1 LOCUST_RACE_ID=1 LOCUST_PROPERTY_ID=1

Guests are provisioned through the subscription webhook, so run against an
environment where STRIPE_WEBHOOK_SECRET is empty.

Run scenarios:
  locust -f locustfile.py --tags contention   # Many guests, same nights, one winner
  locust -f locustfile.py --tags throughput   # Quotes, rates and cached calendars
  locust -f locustfile.py --tags webhooks     # Replayed renewals must not double-credit
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import json
import os
import random
import string
import time
from locust import HttpUser, task, between, tag, events
from datetime import date, timedelta

HOST_ID = int(os.environ.get("LOCUST_HOST_ID", "1"))
RACE_ID = int(os.environ.get("LOCUST_RACE_ID", "1"))
PROPERTY_ID = int(os.environ.get("LOCUST_PROPERTY_ID", "1"))

# Every contention user fights for this stay
CONTESTED_CHECK_IN = date.today() + timedelta(days=45)
CONTESTED_CHECK_OUT = CONTESTED_CHECK_IN + timedelta(days=1)


def random_email():
    suffix = "".join(random.choices(string.ascii_lowercase, k=6))
    return f"load_{random.randint(10000, 99999)}_{suffix}@test.com"


def webhook(client, payload: dict, name: str):
    return client.post(
        "/api/v1/webhooks/subscriptions",
        data=json.dumps(payload),
        headers={"Content-Type": "application/json"},
        name=name,
    )


def provision_guest(client) -> int | None:
    """Create a subscribed account (welcome bonus) and top it up with one renewal."""
    sub_id = "sub_load_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=12))
    resp = webhook(client, {
        "id": f"evt_{sub_id}_created",
        "type": "checkout.session.completed",
        "data": {"object": {
            "mode": "subscription",
            "subscription": sub_id,
            "customer": f"cus_{sub_id}",
            "metadata": {"create_account": "true", "email": random_email(), "first_name": "Load"},
        }},
    }, name="/webhooks/subscriptions [created]")
    if resp.status_code != 200:
        return None
    user_id = resp.json().get("user_id")

    period_end = int(time.time()) + 30 * 86400
    webhook(client, renewal(sub_id, user_id, period_end), name="/webhooks/subscriptions [renewed]")
    return user_id


def renewal(sub_id: str, user_id: int, period_end: int) -> dict:
    return {
        "id": f"evt_{sub_id}_{period_end}",
        "type": "invoice.payment_succeeded",
        "data": {"object": {
            "id": f"in_{sub_id}_{period_end}",
            "billing_reason": "subscription_cycle",
            "subscription": sub_id,
            "metadata": {"user_id": str(user_id)},
            "amount_paid": 999,
            "currency": "eur",
            "lines": {"data": [{"period": {"start": period_end - 30 * 86400, "end": period_end}}]},
        }},
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: host={HOST_ID} race={RACE_ID} property={PROPERTY_ID}")
    print(f"       contested stay {CONTESTED_CHECK_IN} -> {CONTESTED_CHECK_OUT}")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many guests request the same night, host accepts all

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify at most one accepted stay holds the race:
      SELECT COUNT(*) FROM bookings
       WHERE race_id = X
         AND status IN ('accepted', 'confirmed');
    Should be <= 1, and for every user:
      points_balance = SUM(points_transactions.amount)
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.user_id = provision_guest(self.client)
        self.headers = {"X-User-Id": str(self.user_id)} if self.user_id else {}
        self.host_headers = {"X-User-Id": str(HOST_ID)}

    @tag("contention")
    @task
    def request_and_accept(self):
        if not self.headers:
            return

        with self.client.post("/api/v1/bookings/",
            json={
                "race_id": RACE_ID,
                "check_in": CONTESTED_CHECK_IN.isoformat(),
                "check_out": CONTESTED_CHECK_OUT.isoformat(),
            },
            headers=self.headers,
            name="/api/v1/bookings/ [contested]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
                booking_id = resp.json()["id"]
            elif resp.status_code in (400, 409):
                resp.success()  # Expected: already requested, dates taken or short of points
                return
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
                return

        with self.client.post(f"/api/v1/bookings/{booking_id}/accept",
            headers=self.host_headers,
            name="/api/v1/bookings/{id}/accept",
            catch_response=True
        ) as resp:
            if resp.status_code in (200, 409):
                resp.success()  # 409: another accept already holds the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def calendar_cached(self):
        """Hammer the cached calendar."""
        start = date.today() + timedelta(days=random.randint(0, 3) * 30)
        self.client.get(
            f"/api/v1/properties/{PROPERTY_ID}/availability/",
            params={"start": start.isoformat(), "end": (start + timedelta(days=30)).isoformat()},
            name="/api/v1/properties/{id}/availability/ [cached]")

    @tag("throughput", "read")
    @task(5)
    def quote(self):
        check_in = date.today() + timedelta(days=random.randint(10, 90))
        self.client.get("/api/v1/bookings/quote",
            params={
                "race_id": RACE_ID,
                "check_in": check_in.isoformat(),
                "check_out": (check_in + timedelta(days=random.randint(1, 4))).isoformat(),
            },
            name="/api/v1/bookings/quote")

    @tag("throughput", "read")
    @task(2)
    def rates(self):
        self.client.get("/api/v1/points/rates")

    @tag("throughput")
    @task(1)
    def health_check(self):
        """Monitor system health."""
        self.client.get("/health")


class WebhookReplayUser(HttpUser):
    """
    TEST 3: At-least-once delivery - the same renewal arrives many times

    Run: locust -f locustfile.py --tags webhooks -u 50 -r 25 --run-time 30s

    After test, verify each subscription got one renewal bonus per period:
      SELECT dedup_key, COUNT(*) FROM processed_webhook_events GROUP BY 1 HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.user_id = provision_guest(self.client)
        self.sub_id = "sub_replay_" + "".join(random.choices(string.ascii_lowercase, k=8))
        self.period_end = int(time.time()) + 60 * 86400

    @tag("webhooks")
    @task
    def redeliver_renewal(self):
        if not self.user_id:
            return
        with self.client.post("/api/v1/webhooks/subscriptions",
            data=json.dumps(renewal(self.sub_id, self.user_id, self.period_end)),
            headers={"Content-Type": "application/json"},
            name="/webhooks/subscriptions [replay]",
            catch_response=True
        ) as resp:
            if resp.status_code == 200 and resp.json().get("status") in ("applied", "replay"):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = {"X-User-Id": str(random.randint(100000, 999999))}

    def _expect(self, resp, allowed):
        if resp.status_code in allowed:
            resp.success()
        else:
            resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_race(self):
        with self.client.post("/api/v1/bookings/",
            json={"race_id": 999999, "check_in": "2030-01-01", "check_out": "2030-01-02"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, (404,))

    @tag("edge")
    @task
    def reversed_dates(self):
        with self.client.post("/api/v1/bookings/",
            json={"race_id": RACE_ID, "check_in": "2030-01-05", "check_out": "2030-01-01"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, (400, 404))

    @tag("edge")
    @task
    def zero_guests(self):
        with self.client.post("/api/v1/bookings/",
            json={"race_id": RACE_ID, "check_in": "2030-01-01", "check_out": "2030-01-02", "guests_count": 0},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, (422,))

    @tag("edge")
    @task
    def malformed_json(self):
        """Send garbage data."""
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_identity(self):
        """Try booking without the gateway header."""
        with self.client.post("/api/v1/bookings/",
            json={"race_id": RACE_ID, "check_in": "2030-01-01", "check_out": "2030-01-02"},
            catch_response=True
        ) as resp:
            self._expect(resp, (401,))

    @tag("edge")
    @task
    def unsigned_garbage_webhook(self):
        with self.client.post("/api/v1/webhooks/subscriptions",
            data="{]",
            catch_response=True
        ) as resp:
            self._expect(resp, (400,))
