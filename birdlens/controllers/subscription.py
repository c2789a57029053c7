from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from birdlens.config import Settings
from birdlens.dependencies import (
    ErrorResponse,
    current_user,
    error_detail,
    get_ledger,
    get_repository,
    require_api_headers,
)
from birdlens.metrics import stripe_webhook_total
from birdlens.models import ErrorCode, User
from birdlens.plans import PLAN_LIMITS, Plan, get_plan_limits
from birdlens.services import billing
from birdlens.services.repository import Repository
from birdlens.services.usage_ledger import UsageLedger

settings = Settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription")


class PlanInfo(BaseModel):
    id: Plan
    name: str
    price: float
    limits: dict[str, Any]


class SubscriptionResponse(BaseModel):
    plan: Plan
    effective_plan: Plan
    end_date: datetime | None = None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    limits: dict[str, Any]


class DailyLimitResponse(BaseModel):
    within_limit: bool
    current: int
    limit: int


class SubscriptionUpdateRequest(BaseModel):
    plan: Plan


class CheckoutResponse(BaseModel):
    subscription_id: str
    client_secret: str | None = None


def _price(plan: Plan) -> float:
    return settings.premium_price_usd if plan is Plan.PREMIUM else 0.0


def _subscription_response(user: User, ledger: UsageLedger) -> SubscriptionResponse:
    effective = ledger.get_effective_plan(user)
    return SubscriptionResponse(
        plan=Plan(user.subscription_plan),
        effective_plan=effective,
        end_date=user.subscription_end_date,
        stripe_customer_id=user.stripe_customer_id,
        stripe_subscription_id=user.stripe_subscription_id,
        limits=get_plan_limits(effective).as_wire(),
    )


@router.get("/plans", response_model=list[PlanInfo])
async def list_plans(_: int | None = Depends(require_api_headers)):
    return [
        PlanInfo(
            id=plan,
            name=plan.value.capitalize(),
            price=_price(plan),
            limits=limits.as_wire(),
        )
        for plan, limits in PLAN_LIMITS.items()
    ]


@router.get(
    "",
    response_model=SubscriptionResponse,
    responses={401: {"model": ErrorResponse}},
)
async def get_subscription(
    user: User = Depends(current_user),
    ledger: UsageLedger = Depends(get_ledger),
):
    return _subscription_response(user, ledger)


@router.get(
    "/daily-limit",
    response_model=DailyLimitResponse,
    responses={401: {"model": ErrorResponse}},
)
async def daily_limit(
    user: User = Depends(current_user),
    ledger: UsageLedger = Depends(get_ledger),
):
    check = await asyncio.to_thread(ledger.check_daily_limit, user.id)
    return DailyLimitResponse(**check.as_wire())


@router.post(
    "/update",
    response_model=SubscriptionResponse,
    responses={401: {"model": ErrorResponse}},
)
async def update_subscription(
    body: SubscriptionUpdateRequest,
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Switch plans immediately, without payment."""
    end_date = None
    if body.plan is Plan.PREMIUM:
        end_date = datetime.now(timezone.utc) + timedelta(days=settings.premium_period_days)

    def _db_call() -> User:
        updated = repository.update_user_subscription(user.id, body.plan.value, end_date)
        repository.log_event(user.id, f"plan_changed_{body.plan.value}")
        return updated

    updated = await asyncio.to_thread(_db_call)
    return _subscription_response(updated, ledger)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def checkout(
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
):
    try:
        data = await asyncio.to_thread(
            billing.create_premium_subscription, repository, user
        )
    except billing.BillingUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail=error_detail(ErrorCode.SERVICE_UNAVAILABLE, str(exc)),
        ) from exc
    return CheckoutResponse(**data)


@router.post("/webhook", responses={400: {"model": ErrorResponse}})
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    repository: Repository = Depends(get_repository),
):
    raw_body = await request.body()
    try:
        event = billing.construct_event(raw_body, stripe_signature)
    except billing.BillingUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail=error_detail(ErrorCode.SERVICE_UNAVAILABLE, str(exc)),
        ) from exc
    except ValueError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise HTTPException(
            status_code=400,
            detail=error_detail(ErrorCode.BAD_REQUEST, "Invalid webhook payload"),
        ) from exc

    event_type = billing.event_type(event) or "unknown"
    stripe_webhook_total.labels(event_type=event_type).inc()
    try:
        action = await asyncio.to_thread(billing.handle_event, repository, event)
    except billing.BillingUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail=error_detail(ErrorCode.SERVICE_UNAVAILABLE, str(exc)),
        ) from exc
    return {"received": True, "action": action}
