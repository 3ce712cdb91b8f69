"""
HTTP tests for the subscription router.

Uses the in-memory stores and demo payments, so no database or Stripe
credentials are needed.
"""
import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from main import create_app
from services.container import build_services


@pytest.fixture
def container(clock):
    test_settings = Settings(
        database_url=None,
        stripe_secret_key=None,
        demo_payment_delay_seconds=0,
        frontend_url="http://test",
    )
    return build_services(test_settings, clock=clock)


@pytest.fixture
def client(container):
    """FastAPI TestClient fixture over freshly built in-memory services"""
    app = create_app(services=container)
    with TestClient(app) as test_client:
        yield test_client


def test_container_uses_memory_backends(container):
    assert container.uses_database is False
    assert container.gateway.demo_mode is True


def test_list_plans(client):
    response = client.get("/api/subscription/plans")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    plans = {plan["id"]: plan for plan in body["data"]["plans"]}
    assert plans["pro"]["display_price"] == "$29.99"
    assert plans["pro"]["trial_days"] == 14
    assert plans["free"]["assignment_limit"] == 4


def test_status_creates_trial(client):
    response = client.get("/api/subscription/u1")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "trial"
    assert data["is_trial_active"] is True
    assert data["trial_days_remaining"] == 14
    assert data["requires_payment_method"] is False


def test_upgrade_then_cancel(client):
    client.get("/api/subscription/u1")

    upgrade = client.post("/api/subscription/u1/upgrade", json={"payment_method_id": "pm_card_visa"})
    assert upgrade.status_code == 200
    assert "demo mode" in upgrade.json()["message"]

    entitlements = client.get("/api/subscription/u1/entitlements").json()["data"]
    assert entitlements == {
        "can_create_assignment": True,
        "can_access_calendar": True,
        "trial_days_remaining": 0,
    }

    cancel = client.post("/api/subscription/u1/cancel")
    assert cancel.status_code == 200

    status = client.get("/api/subscription/u1").json()["data"]
    assert status["status"] == "cancelled"
    entitlements = client.get("/api/subscription/u1/entitlements").json()["data"]
    assert entitlements["can_access_calendar"] is False


def test_upgrade_rejects_empty_payment_method(client):
    response = client.post("/api/subscription/u1/upgrade", json={"payment_method_id": ""})

    assert response.status_code == 422


def test_cancel_unknown_user(client):
    response = client.post("/api/subscription/ghost/cancel")

    assert response.status_code == 409
    assert response.json()["error"] == "CANCEL_FAILED"


def test_expired_user_cannot_record_assignment(client, clock):
    client.get("/api/subscription/u1")
    clock.advance(days=15)

    response = client.post("/api/subscription/u1/usage")

    assert response.status_code == 403
    assert response.json()["error"] == "ASSIGNMENT_LIMIT"


def test_record_and_read_usage(client):
    first = client.post("/api/subscription/u1/usage")
    assert first.status_code == 200
    assert first.json()["data"] == {"used": 1, "limit": -1, "remaining": -1}

    usage = client.get("/api/subscription/u1/usage").json()["data"]
    assert usage["used"] == 1


def test_store_unavailable(container, unavailable_store):
    container.entitlements.store = unavailable_store
    app = create_app(services=container)

    with TestClient(app) as client:
        status = client.get("/api/subscription/u1")
        entitlements = client.get("/api/subscription/u1/entitlements").json()["data"]

    assert status.status_code == 503
    assert status.json()["error"] == "SUBSCRIPTION_UNAVAILABLE"
    assert entitlements["can_create_assignment"] is True
    assert entitlements["can_access_calendar"] is False
