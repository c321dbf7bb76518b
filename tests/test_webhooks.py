import json
import time
from datetime import timedelta

import anyio
import httpx
import pytest

from models.customer import Customer
from models.system_log import SystemLog
from utils import security
from utils.membership import SubscriptionFact, utc_now
from utils.security import compute_square_signature, verify_square_signature
from utils.webhook_events import handle_webhook_event


def customer_event(event_type, **customer):
    customer.setdefault("id", "SQ1")
    return {"type": event_type, "event_id": "evt-1", "merchant_id": "M1",
            "data": {"object": {"customer": customer}}}


def subscription_event(event_type, customer_id="SQ1"):
    return {"type": event_type, "event_id": "evt-2",
            "data": {"object": {"subscription": {"id": "SUB1", "customer_id": customer_id,
                                                 "status": "ACTIVE", "plan_variation_id": "PLAN1"}}}}


def event_types(db):
    return [e.event_type for e in db.query(SystemLog).order_by(SystemLog.id).all()]


def test_signature_round_trip():
    body = b'{"type": "customer.created"}'
    url = "https://gym.example.com/webhooks/square"
    signature = compute_square_signature(body, url, "secret")
    assert verify_square_signature(body, signature, url, "secret")
    assert not verify_square_signature(body + b" ", signature, url, "secret")
    assert not verify_square_signature(body, "", url, "secret")
    assert not verify_square_signature(body, signature, url, "")


def test_customer_created_upserts_directory(db, source, policy):
    payload = customer_event("customer.created", given_name="Sam", family_name="Smith",
                             phone_number="07700 900123")

    assert handle_webhook_event(db, payload, source, policy) == "processed"

    customer = db.get(Customer, "SQ1")
    assert customer.name == "Sam Smith"
    assert customer.phone_number == "+447700900123"
    assert event_types(db) == ["webhook_received", "customer_webhook"]


def test_customer_deleted_keeps_directory_entry(db, source, policy, add_customer):
    add_customer("SQ1", "Sam Smith", "+447700900123")

    assert handle_webhook_event(db, customer_event("customer.deleted"), source, policy) == "processed"

    assert db.get(Customer, "SQ1") is not None


def test_subscription_event_reconciles_customer(db, source, system_status, policy):
    today = utc_now().date()
    source.customers["SQ1"] = {"id": "SQ1", "given_name": "Sam", "phone_number": "+447700900123"}
    source.subscriptions["SQ1"] = [SubscriptionFact("SQ1", "ACTIVE", today + timedelta(days=20))]

    outcome = handle_webhook_event(db, subscription_event("subscription.created"), source, policy, system_status)

    assert outcome == "processed"
    customer = db.get(Customer, "SQ1")
    assert customer.name == "Sam"
    assert customer.membership_type == "Subscription Based"
    assert customer.next_payment == today + timedelta(days=20)
    entry = db.query(SystemLog).filter(SystemLog.event_type == "subscription_webhook").one()
    assert entry.details["planId"] == "PLAN1"
    assert entry.details["coverageValid"] is True


def test_unhandled_event_type(db, source, policy):
    assert handle_webhook_event(db, {"type": "invoice.paid"}, source, policy) == "unhandled"
    assert event_types(db) == ["webhook_received", "webhook_unhandled"]


def test_malformed_event_is_logged_as_failed(db, source, policy):
    outcome = handle_webhook_event(db, {"type": "customer.updated", "data": {}}, source, policy)

    assert outcome == "failed"
    failure = db.query(SystemLog).filter(SystemLog.severity == "error").one()
    assert failure.event_type == "customer_webhook"
    assert failure.details["name"] == "ValueError"


# --- HTTP endpoint ---

def test_endpoint_without_signature_key_warns(client, monkeypatch):
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_SIGNATURE_KEY", "")

    response = client.post("/webhooks/square", json={"type": "invoice.paid"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "outcome": "unhandled"}


def test_endpoint_rejects_bad_signature(client, monkeypatch, system_status):
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_SIGNATURE_KEY", "secret")
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_URL", "https://gym.example.com/webhooks/square")

    response = client.post("/webhooks/square", json={"type": "customer.created"},
                           headers={"x-square-hmacsha256-signature": "bogus"})

    assert response.status_code == 401
    assert system_status.last_error["message"] == "Invalid webhook signature"


def test_endpoint_accepts_valid_signature(client, monkeypatch):
    url = "https://gym.example.com/webhooks/square"
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_SIGNATURE_KEY", "secret")
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_URL", url)
    body = json.dumps(customer_event("customer.updated", given_name="Sam")).encode("utf-8")

    response = client.post(
        "/webhooks/square",
        content=body,
        headers={
            "Content-Type": "application/json",
            "x-square-hmacsha256-signature": compute_square_signature(body, url, "secret"),
        },
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "processed"


@pytest.mark.parametrize("body", [b"not json", b"[1, 2, 3]"])
def test_endpoint_rejects_bad_body(client, monkeypatch, body):
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    response = client.post("/webhooks/square", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400


@pytest.mark.anyio
async def test_slow_reconciliation_does_not_stall_other_requests(app, source, monkeypatch):
    monkeypatch.setattr(security, "SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    source.customers["SQ1"] = {"id": "SQ1", "given_name": "Sam", "phone_number": "+447700900123"}
    fetch_subscriptions = source.fetch_subscriptions

    def slow_fetch_subscriptions(customer_id):
        time.sleep(1.5)
        return fetch_subscriptions(customer_id)

    source.fetch_subscriptions = slow_fetch_subscriptions
    results = {}

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:

        async def send_webhook():
            response = await http.post("/webhooks/square", json=subscription_event("subscription.updated"))
            results["webhook"] = response.json()

        async def check_health():
            await anyio.sleep(0.05)
            started = time.perf_counter()
            response = await http.get("/health")
            results["health_status"] = response.status_code
            results["health_latency"] = time.perf_counter() - started

        async with anyio.create_task_group() as tasks:
            tasks.start_soon(send_webhook)
            tasks.start_soon(check_health)

    assert results["webhook"] == {"success": True, "outcome": "processed"}
    assert results["health_status"] == 200
    assert results["health_latency"] < 1.0
