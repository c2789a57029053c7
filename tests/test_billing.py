from datetime import datetime, timezone

import pytest

from birdlens.services import billing


@pytest.fixture(autouse=True)
def stripe_keys(monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(billing.settings, "stripe_price_id", "price_premium")


def test_payment_succeeded_with_item_level_period(repo, make_user, monkeypatch):
    user = make_user()
    repo.update_user(user.id, stripe_customer_id=f"cus_items_{user.id}")
    end = datetime(2026, 12, 1, tzinfo=timezone.utc)
    monkeypatch.setattr(
        billing.stripe.Subscription,
        "retrieve",
        lambda sub_id: {"items": {"data": [{"current_period_end": int(end.timestamp())}]}},
    )
    event = {
        "type": "invoice.payment_succeeded",
        "data": {
            "object": {
                "customer": f"cus_items_{user.id}",
                "parent": {"subscription_details": {"subscription": "sub_items"}},
            }
        },
    }

    assert billing.handle_event(repo, event) == "premium_activated"
    stored = repo.get_user(user.id)
    assert stored.subscription_plan == "premium"
    assert stored.subscription_end_date.replace(tzinfo=timezone.utc) == end


def test_payment_for_unknown_customer_is_ignored(repo, monkeypatch):
    def _retrieve(sub_id):
        raise AssertionError("should not be called")

    monkeypatch.setattr(billing.stripe.Subscription, "retrieve", _retrieve)
    event = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {"customer": "cus_nobody", "subscription": "sub_x"}},
    }
    assert billing.handle_event(repo, event) is None


def test_stripe_error_on_lookup_is_unavailable(repo, make_user, monkeypatch):
    user = make_user()
    repo.update_user(user.id, stripe_customer_id=f"cus_err_{user.id}")

    def _retrieve(sub_id):
        raise billing.stripe.APIConnectionError("network down")

    monkeypatch.setattr(billing.stripe.Subscription, "retrieve", _retrieve)
    event = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {"customer": f"cus_err_{user.id}", "subscription": "sub_e"}},
    }
    with pytest.raises(billing.BillingUnavailable):
        billing.handle_event(repo, event)
    assert repo.get_user(user.id).subscription_plan == "free"


def test_construct_event_requires_secret(monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_webhook_secret", None)
    with pytest.raises(billing.BillingUnavailable):
        billing.construct_event(b"{}", "t=1,v1=abc")


def test_payment_webhook_works_without_price_id(repo, make_user, monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_price_id", None)
    user = make_user()
    repo.update_user(user.id, stripe_customer_id=f"cus_noprice_{user.id}")
    monkeypatch.setattr(
        billing.stripe.Subscription, "retrieve", lambda sub_id: {"current_period_end": None}
    )
    event = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {"customer": f"cus_noprice_{user.id}", "subscription": "sub_np"}},
    }
    assert billing.handle_event(repo, event) == "premium_activated"
    assert repo.get_user(user.id).subscription_plan == "premium"


def test_checkout_requires_price_id(repo, make_user, monkeypatch):
    monkeypatch.setattr(billing.settings, "stripe_price_id", None)
    with pytest.raises(billing.BillingUnavailable):
        billing.create_premium_subscription(repo, make_user())
