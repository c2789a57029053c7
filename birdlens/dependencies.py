from __future__ import annotations

import asyncio
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel

from birdlens import db as db_module
from birdlens.config import Settings
from birdlens.models import ErrorCode, User
from birdlens.services.repository import Repository, SqlRepository
from birdlens.services.usage_ledger import UsageLedger

settings = Settings()
redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: ErrorCode
    message: str


def error_detail(code: ErrorCode, message: str, **extra) -> dict:
    return {**ErrorResponse(code=code, message=message).model_dump(mode="json"), **extra}


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
) -> int | None:
    """Validate API headers and return the caller's user id, if any."""
    if x_api_ver is None:
        raise HTTPException(
            status_code=426,
            detail=error_detail(ErrorCode.UPGRADE_REQUIRED, "Missing API version"),
        )

    if x_api_ver != "v1":
        raise HTTPException(
            status_code=426,
            detail=error_detail(ErrorCode.UPGRADE_REQUIRED, "Invalid API version"),
        )

    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=401,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "Invalid API key"),
        )

    return x_user_id


async def rate_limit(
    request: Request, user_id: int | None = Depends(require_api_headers)
) -> int | None:
    """Throttle requests by IP and user via Redis."""
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in settings.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        proxies = forwarded[1:] + [client_host]
        if forwarded and all(p in settings.trusted_proxies for p in proxies):
            ip = forwarded[0]
    ip_key = f"rate:ip:{ip}"
    user_key = f"rate:user:{user_id}" if user_id is not None else None

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        if user_key:
            pipe.incr(user_key)
            pipe.expire(user_key, 60)
        counts = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        raise HTTPException(
            status_code=503,
            detail=error_detail(
                ErrorCode.SERVICE_UNAVAILABLE, "Rate limiter unavailable"
            ),
        ) from exc
    ip_count = counts[0]
    user_count = counts[2] if user_key else 0
    if (
        ip_count > settings.rate_limit_ip_per_minute
        or user_count > settings.rate_limit_user_per_minute
    ):
        raise HTTPException(
            status_code=429,
            detail=error_detail(ErrorCode.TOO_MANY_REQUESTS, "Rate limit exceeded"),
        )

    return user_id


def get_repository() -> Repository:
    return SqlRepository(db_module.SessionLocal)


def get_ledger(repository: Repository = Depends(get_repository)) -> UsageLedger:
    return UsageLedger(repository)


async def current_user(
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
) -> User:
    """Resolve ``X-User-ID`` into an existing user or fail with 401."""
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "Authentication required"),
        )
    user = await asyncio.to_thread(repository.get_user, user_id)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "User not found"),
        )
    return user
