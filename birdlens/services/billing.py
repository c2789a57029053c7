"""Stripe integration for the premium plan.

Only the API layer uses this module; the usage ledger reads the resulting
plan fields from the user record and knows nothing about Stripe.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import stripe

from birdlens.config import Settings
from birdlens.models import User
from birdlens.plans import Plan
from birdlens.services.repository import Repository

logger = logging.getLogger(__name__)
settings = Settings()


class BillingUnavailable(RuntimeError):
    """Stripe is not configured or did not answer."""


def _field(obj: Any, name: str) -> Any:
    """Read ``name`` from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _path(obj: Any, *names: str) -> Any:
    for name in names:
        obj = _field(obj, name)
    return obj


def _configure(require_price: bool = True) -> None:
    if not settings.stripe_secret_key:
        raise BillingUnavailable("Stripe is not configured")
    if require_price and not settings.stripe_price_id:
        raise BillingUnavailable("Stripe premium price is not configured")
    stripe.api_key = settings.stripe_secret_key


def create_premium_subscription(repository: Repository, user: User) -> dict[str, Any]:
    """Start an incomplete premium subscription and return its client secret."""
    _configure()
    try:
        customer_id = user.stripe_customer_id
        if not customer_id:
            customer = stripe.Customer.create(
                name=user.username,
                email=user.email,
                metadata={"user_id": str(user.id)},
            )
            customer_id = customer.id
            repository.update_user(user.id, stripe_customer_id=customer_id)

        subscription = stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": settings.stripe_price_id}],
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
        )
    except stripe.StripeError as exc:
        logger.exception("Stripe subscription creation failed")
        raise BillingUnavailable("Stripe request failed") from exc

    repository.update_user(user.id, stripe_subscription_id=subscription.id)
    client_secret = _path(
        subscription, "latest_invoice", "payment_intent", "client_secret"
    ) or _path(subscription, "latest_invoice", "confirmation_secret", "client_secret")
    return {"subscription_id": subscription.id, "client_secret": client_secret}


def construct_event(payload: bytes, signature: str | None) -> Any:
    """Verify the webhook signature; raises ``ValueError`` when it is invalid."""
    if not settings.stripe_webhook_secret:
        raise BillingUnavailable("Stripe webhook secret is not configured")
    try:
        return stripe.Webhook.construct_event(
            payload, signature or "", settings.stripe_webhook_secret
        )
    except stripe.SignatureVerificationError as exc:
        raise ValueError("Invalid Stripe signature") from exc


def _period_end(subscription: Any) -> datetime | None:
    end = _field(subscription, "current_period_end")
    if end is None:
        # newer API versions keep the period on subscription items
        items = _path(subscription, "items", "data") or []
        end = _field(items[0], "current_period_end") if items else None
    if end is None:
        return None
    return datetime.fromtimestamp(int(end), tz=timezone.utc)


def _invoice_subscription_id(invoice: Any) -> str | None:
    return _field(invoice, "subscription") or _path(
        invoice, "parent", "subscription_details", "subscription"
    )


def event_type(event: Any) -> str | None:
    return _field(event, "type")


def handle_event(repository: Repository, event: Any) -> str | None:
    """Apply a verified Stripe event to the user's plan.

    Returns the analytics event name that was recorded, if any.
    """
    kind = event_type(event)
    obj = _path(event, "data", "object")

    if kind == "invoice.payment_succeeded":
        subscription_id = _invoice_subscription_id(obj)
        customer_id = _field(obj, "customer")
        if not subscription_id or not customer_id:
            return None
        user = repository.get_user_by_stripe_customer(customer_id)
        if user is None:
            logger.warning("No user for Stripe customer %s", customer_id)
            return None
        _configure(require_price=False)
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as exc:
            logger.exception("Stripe subscription lookup failed")
            raise BillingUnavailable("Stripe request failed") from exc
        repository.update_user_subscription(
            user.id, Plan.PREMIUM.value, _period_end(subscription)
        )
        repository.log_event(user.id, "premium_activated")
        return "premium_activated"

    if kind == "customer.subscription.deleted":
        customer_id = _field(obj, "customer")
        user = repository.get_user_by_stripe_customer(customer_id) if customer_id else None
        if user is None:
            return None
        repository.update_user_subscription(user.id, Plan.FREE.value, None)
        repository.log_event(user.id, "premium_cancelled")
        return "premium_cancelled"

    logger.info("Unhandled Stripe event type %s", kind)
    return None


__all__ = [
    "BillingUnavailable",
    "create_premium_subscription",
    "construct_event",
    "event_type",
    "handle_event",
]
