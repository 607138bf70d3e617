from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.app.checkout import PaymentGateway
from backend.app.checkout.config import load_checkout_config
from backend.app.checkout.providers import SandboxPaymentCollaborator
from backend.app.routes import checkout as checkout_routes
from backend.app.services.checkout import build_checkout_service
from backend.tests.checkout_fakes import FakeCatalog, RecordingPayment, make_module, make_plan

MEMBER = SimpleNamespace(id=1, role="user", organization_id=42)
STRANGER = SimpleNamespace(id=2, role="user", organization_id=99)

CARD = {
    "method": "credit_card",
    "holderName": "Ana Souza",
    "cardNumber": "4242 4242 4242 4242",
    "expiry": "12/30",
    "cvc": "123",
}


@pytest.fixture
def catalog():
    return FakeCatalog(make_plan(), make_module())


@pytest.fixture
def app(monkeypatch, catalog):
    service = build_checkout_service(
        load_checkout_config({}),
        repository=catalog,
        payments={
            PaymentGateway.STRIPE: RecordingPayment(),
            PaymentGateway.COMPLYPAY: SandboxPaymentCollaborator(latency_seconds=0),
        },
    )
    monkeypatch.setattr(checkout_routes, "get_checkout_service", lambda: service)

    application = FastAPI()
    application.include_router(checkout_routes.router)
    application.dependency_overrides[checkout_routes._get_current_user] = lambda: MEMBER
    return application


def _open(client: TestClient, **params) -> dict:
    query = {"type": "plan", "itemId": 7, "organizationId": 42}
    query.update(params)
    response = client.post("/api/checkout/sessions", params=query)
    assert response.status_code == 201, response.text
    return response.json()


def test_card_checkout_reconciles_plan_and_redirects(app, catalog):
    with TestClient(app) as client:
        session = _open(client)
        assert session["clientSecret"] == "pi_123_secret_abc"
        assert session["state"] == "idle"
        assert session["item"]["name"] == "Professional"
        assert [option["count"] for option in session["item"]["installmentOptions"]] == [1, 3, 6, 12]

        url = f"/api/checkout/sessions/{session['id']}"
        updated = client.put(f"{url}/payment-method", json={**CARD, "installments": 3})
        assert updated.status_code == 200
        assert updated.json()["paymentMethod"]["installments"] == 3
        assert updated.json()["paymentMethod"]["maskedCardNumber"] == "**** **** **** 4242"

        submitted = client.post(f"{url}/submit")

    assert submitted.status_code == 200
    body = submitted.json()
    assert body["state"] == "succeeded"
    assert body["redirectTo"] == "/login"
    assert body["lastResult"] == {"status": "succeeded", "transaction_id": "pi_123"}
    assert catalog.plan_confirmations == [("pi_123", 42)]


def test_incomplete_card_is_rejected(app):
    with TestClient(app) as client:
        session = _open(client)
        url = f"/api/checkout/sessions/{session['id']}"
        client.put(f"{url}/payment-method", json={"method": "credit_card", "holderName": "Ana"})

        response = client.post(f"{url}/submit")
        invalid_installments = client.put(f"{url}/payment-method", json={**CARD, "installments": 5})

    assert response.status_code == 422
    assert invalid_installments.status_code == 422


def test_pix_checkout_with_sandbox_is_confirmed_manually(app, catalog):
    with TestClient(app) as client:
        session = _open(client, type="module", itemId=3, gateway="complypay")
        url = f"/api/checkout/sessions/{session['id']}"
        client.put(f"{url}/payment-method", json={"method": "pix"})

        pending = client.post(f"{url}/submit").json()
        confirmed = client.post(f"{url}/confirm")

    assert pending["state"] == "requires_action"
    assert pending["lastResult"]["action"] == "display_qr"
    assert pending["lastResult"]["payload"].startswith("000201")
    assert confirmed.status_code == 200
    assert confirmed.json()["redirectTo"] == "/login"
    assert catalog.module_confirmations == [session["clientSecret"].split("_secret_")[0]]


def test_cannot_buy_for_another_organization(app):
    with TestClient(app) as client:
        response = client.post(
            "/api/checkout/sessions", params={"type": "plan", "itemId": 7, "organizationId": 7}
        )

    assert response.status_code == 403


def test_sessions_are_private_to_their_owner(app):
    with TestClient(app) as client:
        session = _open(client)
        app.dependency_overrides[checkout_routes._get_current_user] = lambda: STRANGER
        response = client.get(f"/api/checkout/sessions/{session['id']}")

    assert response.status_code == 404


def test_unknown_and_abandoned_sessions_are_not_found(app):
    with TestClient(app) as client:
        assert client.get("/api/checkout/sessions/chk_missing").status_code == 404

        session = _open(client)
        url = f"/api/checkout/sessions/{session['id']}"
        assert client.delete(url).status_code == 204
        assert client.get(url).status_code == 404


def test_unavailable_item_is_reported_on_the_session(app):
    with TestClient(app) as client:
        session = _open(client, itemId=404)

    assert session["clientSecret"] is None
    assert session["error"]


def test_webhook_applies_subscription_update(app, catalog):
    event = {
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_1",
                "status": "active",
                "metadata": {"organizationId": "42", "planId": "7"},
                "current_period_start": 1704067200,
                "current_period_end": 1706745600,
            }
        },
    }

    with TestClient(app) as client:
        accepted = client.post("/api/checkout/webhook", content=json.dumps(event))
        rejected = client.post("/api/checkout/webhook", content=b"not json")

    assert accepted.status_code == 204
    assert rejected.status_code == 400
    assert catalog.subscription_updates[0]["plan_id"] == 7


def test_notifications_can_be_dismissed(app):
    with TestClient(app) as client:
        session = _open(client)
        url = f"/api/checkout/sessions/{session['id']}"
        client.put(f"{url}/payment-method", json={"method": "credit_card", "holderName": "Ana"})
        client.post(f"{url}/submit")
        before = client.get(url).json()

        dismissed = client.delete(f"{url}/notifications")
        after = client.get(url).json()

    assert [item["title"] for item in before["notifications"]] == ["Missing information"]
    assert dismissed.status_code == 200
    assert dismissed.json()["notifications"] == []
    assert after["notifications"] == []
    assert after["paymentMethod"]["cardErrors"]


def test_resubmitting_a_paid_session_is_rejected(app, catalog):
    with TestClient(app) as client:
        session = _open(client)
        url = f"/api/checkout/sessions/{session['id']}"
        client.put(f"{url}/payment-method", json=CARD)

        first = client.post(f"{url}/submit")
        second = client.post(f"{url}/submit")

    assert first.json()["state"] == "succeeded"
    assert second.status_code == 409
    assert catalog.plan_confirmations == [("pi_123", 42)]
