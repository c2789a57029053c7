from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from birdlens.dependencies import (
    ErrorResponse,
    current_user,
    error_detail,
    get_ledger,
    get_repository,
)
from birdlens.errors import LimitExceeded
from birdlens.metrics import sighting_limit_reject_total
from birdlens.models import BirdSighting, ErrorCode, User
from birdlens.services.repository import Repository
from birdlens.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sightings")

REQUIRED_FIELDS = ("bird_name", "sighting_date", "is_offline")


class SightingCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bird_name: str = Field(min_length=1)
    scientific_name: str | None = None
    location: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    notes: str | None = None
    image_url: str | None = None
    identification_id: int | None = None
    is_offline: bool | None = None


class SightingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bird_name: str | None = Field(None, min_length=1)
    scientific_name: str | None = None
    location: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    notes: str | None = None
    image_url: str | None = None
    sighting_date: datetime | None = None
    is_offline: bool | None = None


class SightingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    bird_name: str
    scientific_name: str | None = None
    location: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    sighting_date: datetime
    notes: str | None = None
    image_url: str | None = None
    identification_id: int | None = None
    is_offline: bool


async def _owned_sighting(
    repository: Repository, sighting_id: int, user: User
) -> BirdSighting:
    sighting = await asyncio.to_thread(repository.get_sighting, sighting_id)
    if sighting is None:
        raise HTTPException(
            status_code=404,
            detail=error_detail(ErrorCode.NOT_FOUND, "Sighting not found"),
        )
    if sighting.user_id != user.id:
        raise HTTPException(
            status_code=403,
            detail=error_detail(ErrorCode.FORBIDDEN, "Unauthorized access to sighting"),
        )
    return sighting


@router.post(
    "",
    status_code=201,
    response_model=SightingResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def create_sighting(
    body: SightingCreate,
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    def _db_call() -> BirdSighting:
        ledger.ensure_sighting_capacity(user.id)
        return repository.create_sighting(user.id, **body.model_dump(exclude_none=True))

    try:
        sighting = await asyncio.to_thread(_db_call)
    except LimitExceeded as exc:
        sighting_limit_reject_total.inc()
        logger.info("Sighting limit reached for user %s", user.id)
        raise HTTPException(
            status_code=403,
            detail=error_detail(
                ErrorCode.LIMIT_EXCEEDED,
                str(exc),
                sighting_count=exc.current,
                sighting_limit=exc.limit,
                upgrade_required=True,
            ),
        ) from exc
    return SightingResponse.model_validate(sighting)


@router.get(
    "",
    response_model=list[SightingResponse],
    responses={401: {"model": ErrorResponse}},
)
async def list_sightings(
    limit: int | None = Query(None, ge=1),
    user: User = Depends(current_user),
    ledger: UsageLedger = Depends(get_ledger),
):
    rows = await asyncio.to_thread(ledger.user_sightings, user.id, limit)
    return [SightingResponse.model_validate(r) for r in rows]


@router.get(
    "/{sighting_id}",
    response_model=SightingResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_sighting(
    sighting_id: int,
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
):
    sighting = await _owned_sighting(repository, sighting_id, user)
    return SightingResponse.model_validate(sighting)


@router.put(
    "/{sighting_id}",
    response_model=SightingResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_sighting(
    sighting_id: int,
    body: SightingUpdate,
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
):
    await _owned_sighting(repository, sighting_id, user)
    updates = body.model_dump(exclude_unset=True)
    for name in REQUIRED_FIELDS:
        if name in updates and updates[name] is None:
            raise HTTPException(
                status_code=400,
                detail=error_detail(ErrorCode.BAD_REQUEST, f"{name} cannot be null"),
            )
    sighting = await asyncio.to_thread(
        repository.update_sighting, sighting_id, **updates
    )
    return SightingResponse.model_validate(sighting)


@router.delete(
    "/{sighting_id}",
    status_code=204,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_sighting(
    sighting_id: int,
    user: User = Depends(current_user),
    repository: Repository = Depends(get_repository),
):
    await _owned_sighting(repository, sighting_id, user)
    deleted = await asyncio.to_thread(repository.delete_sighting, sighting_id)
    if not deleted:
        raise HTTPException(
            status_code=404,
            detail=error_detail(ErrorCode.NOT_FOUND, "Sighting not found"),
        )
    return Response(status_code=204)
