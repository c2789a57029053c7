from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError

from birdlens.dependencies import (
    ErrorResponse,
    current_user,
    error_detail,
    get_ledger,
    get_repository,
    require_api_headers,
)
from birdlens.models import ErrorCode, User
from birdlens.plans import Plan
from birdlens.services.repository import Repository
from birdlens.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users")


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    email: str | None = Field(None, max_length=255)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str | None = None
    subscription_plan: Plan
    subscription_end_date: datetime | None = None
    daily_identifications_count: int
    created_at: datetime | None = None


class UserMeResponse(UserResponse):
    effective_plan: Plan


@router.post(
    "",
    status_code=201,
    response_model=UserResponse,
    responses={409: {"model": ErrorResponse}},
)
async def create_user(
    body: UserCreate,
    _: int | None = Depends(require_api_headers),
    repository: Repository = Depends(get_repository),
):
    conflict = HTTPException(
        status_code=409,
        detail=error_detail(ErrorCode.CONFLICT, "Username already taken"),
    )
    existing = await asyncio.to_thread(repository.get_user_by_username, body.username)
    if existing is not None:
        raise conflict
    try:
        user = await asyncio.to_thread(repository.create_user, body.username, body.email)
    except IntegrityError as exc:
        raise conflict from exc
    logger.info("Created user %s", user.id)
    return UserResponse.model_validate(user)


@router.get(
    "/me",
    response_model=UserMeResponse,
    responses={401: {"model": ErrorResponse}},
)
async def get_me(
    user: User = Depends(current_user),
    ledger: UsageLedger = Depends(get_ledger),
):
    base = UserResponse.model_validate(user).model_dump()
    return UserMeResponse(**base, effective_plan=ledger.get_effective_plan(user))
