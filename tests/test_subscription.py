import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from birdlens.config import Settings
from birdlens.services import billing

settings = Settings()
WEBHOOK_SECRET = "whsec_test_secret"


def _headers(user_id=None):
    headers = {"X-API-Key": settings.api_key, "X-API-Ver": "v1"}
    if user_id is not None:
        headers["X-User-ID"] = str(user_id)
    return headers


def _signed(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    body = json.dumps(payload)
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()
    return body.encode(), f"t={ts},v1={sig}"


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(billing.settings, "stripe_price_id", "price_premium")
    monkeypatch.setattr(billing.settings, "stripe_webhook_secret", WEBHOOK_SECRET)


def test_list_plans(client):
    resp = client.get("/v1/subscription/plans", headers=_headers())
    assert resp.status_code == 200
    plans = {p["id"]: p for p in resp.json()}
    assert plans["free"]["price"] == 0
    assert plans["free"]["limits"]["identifications"]["per_day"] == 5
    assert plans["premium"]["price"] == settings.premium_price_usd
    assert plans["premium"]["limits"]["identifications"] == {"per_day": -1, "history": -1}
    assert plans["premium"]["limits"]["sightings"]["total"] == -1


def test_get_subscription_free(client, make_user):
    user = make_user()
    resp = client.get("/v1/subscription", headers=_headers(user.id))
    assert resp.status_code == 200
    data = resp.json()
    assert data["plan"] == data["effective_plan"] == "free"
    assert data["limits"]["sightings"]["total"] == 10


def test_expired_premium_reports_free(client, make_user):
    user = make_user(
        plan="premium", end_date=datetime.now(timezone.utc) - timedelta(days=2)
    )
    data = client.get("/v1/subscription", headers=_headers(user.id)).json()
    assert data["plan"] == "premium"
    assert data["effective_plan"] == "free"
    assert data["limits"]["identifications"]["per_day"] == 5


def test_update_to_premium(client, make_user):
    user = make_user()
    resp = client.post(
        "/v1/subscription/update", headers=_headers(user.id), json={"plan": "premium"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["effective_plan"] == "premium"
    assert data["end_date"] is not None
    assert data["limits"]["identifications"]["per_day"] == -1

    limit = client.get("/v1/subscription/daily-limit", headers=_headers(user.id))
    assert limit.json() == {"within_limit": True, "current": 0, "limit": -1}


def test_update_rejects_unknown_plan(client, make_user):
    user = make_user()
    resp = client.post(
        "/v1/subscription/update", headers=_headers(user.id), json={"plan": "gold"}
    )
    assert resp.status_code == 400


def test_daily_limit_requires_user(client):
    assert client.get("/v1/subscription/daily-limit", headers=_headers()).status_code == 401


def test_checkout_not_configured(client, make_user, monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_secret_key", None)
    user = make_user()
    resp = client.post("/v1/subscription/checkout", headers=_headers(user.id))
    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "SERVICE_UNAVAILABLE"


def test_checkout_creates_customer_and_subscription(
    client, repo, make_user, monkeypatch, stripe_configured
):
    created = {}

    def _customer_create(**kwargs):
        created["customer"] = kwargs
        return SimpleNamespace(id="cus_checkout")

    def _subscription_create(**kwargs):
        created["subscription"] = kwargs
        invoice = SimpleNamespace(
            payment_intent=SimpleNamespace(client_secret="pi_secret_123")
        )
        return SimpleNamespace(id="sub_checkout", latest_invoice=invoice)

    monkeypatch.setattr(billing.stripe.Customer, "create", _customer_create)
    monkeypatch.setattr(billing.stripe.Subscription, "create", _subscription_create)

    user = make_user()
    resp = client.post("/v1/subscription/checkout", headers=_headers(user.id))
    assert resp.status_code == 200
    assert resp.json() == {
        "subscription_id": "sub_checkout",
        "client_secret": "pi_secret_123",
    }
    assert created["customer"]["metadata"] == {"user_id": str(user.id)}
    assert created["subscription"]["items"] == [{"price": "price_premium"}]
    stored = repo.get_user(user.id)
    assert stored.stripe_customer_id == "cus_checkout"
    assert stored.stripe_subscription_id == "sub_checkout"


def test_webhook_payment_succeeded_activates_premium(
    client, repo, make_user, monkeypatch, stripe_configured
):
    user = make_user()
    customer_id = f"cus_{user.id}"
    repo.update_user(user.id, stripe_customer_id=customer_id)
    period_end = int((datetime.now(timezone.utc) + timedelta(days=30)).timestamp())
    monkeypatch.setattr(
        billing.stripe.Subscription,
        "retrieve",
        lambda sub_id: {"id": sub_id, "current_period_end": period_end},
    )

    body, signature = _signed(
        {
            "id": "evt_paid",
            "object": "event",
            "type": "invoice.payment_succeeded",
            "data": {
                "object": {
                    "object": "invoice",
                    "customer": customer_id,
                    "subscription": "sub_paid",
                }
            },
        }
    )
    resp = client.post(
        "/v1/subscription/webhook",
        content=body,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "action": "premium_activated"}

    stored = repo.get_user(user.id)
    assert stored.subscription_plan == "premium"
    end = stored.subscription_end_date.replace(tzinfo=timezone.utc)
    assert int(end.timestamp()) == period_end


def test_webhook_subscription_deleted_downgrades(
    client, repo, make_user, stripe_configured
):
    user = make_user(plan="premium")
    customer_id = f"cus_gone_{user.id}"
    repo.update_user(user.id, stripe_customer_id=customer_id)
    body, signature = _signed(
        {
            "id": "evt_deleted",
            "object": "event",
            "type": "customer.subscription.deleted",
            "data": {"object": {"object": "subscription", "customer": customer_id}},
        }
    )
    resp = client.post(
        "/v1/subscription/webhook", content=body, headers={"Stripe-Signature": signature}
    )
    assert resp.status_code == 200
    assert resp.json()["action"] == "premium_cancelled"
    assert repo.get_user(user.id).subscription_plan == "free"


def test_webhook_ignores_unknown_events(client, stripe_configured):
    body, signature = _signed(
        {"id": "evt_other", "object": "event", "type": "charge.refunded", "data": {"object": {}}}
    )
    resp = client.post(
        "/v1/subscription/webhook", content=body, headers={"Stripe-Signature": signature}
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "action": None}


def test_webhook_bad_signature(client, stripe_configured):
    body, signature = _signed({"id": "evt_bad", "type": "x"}, secret="whsec_wrong")
    resp = client.post(
        "/v1/subscription/webhook", content=body, headers={"Stripe-Signature": signature}
    )
    assert resp.status_code == 400


def test_webhook_without_secret(client, monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_webhook_secret", None)
    resp = client.post("/v1/subscription/webhook", content=b"{}")
    assert resp.status_code == 503
