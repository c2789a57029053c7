from __future__ import annotations

import asyncio
import base64
import logging
import time
from datetime import datetime
from typing import Any, Callable, Literal

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from birdlens.config import Settings
from birdlens.dependencies import (
    ErrorResponse,
    error_detail,
    get_ledger,
    get_repository,
    rate_limit,
)
from birdlens.errors import (
    IdentificationFailed,
    InvalidResponseShape,
    LimitExceeded,
    NotFound,
    SchemaViolation,
)
from birdlens.metrics import (
    ai_timeout_total,
    identify_latency_seconds,
    identify_requests_total,
    normalization_fail_total,
    quota_reject_total,
)
from birdlens.models import BirdIdentification, ErrorCode
from birdlens.services import media
from birdlens.services.gpt import (
    identify_bird_description,
    identify_bird_image,
    identify_bird_sound,
)
from birdlens.services.normalizer import normalize_identification
from birdlens.services.repository import Repository
from birdlens.services.storage import get_public_url, upload_media
from birdlens.services.usage_ledger import UsageLedger

settings = Settings()
logger = logging.getLogger(__name__)

OPTIONAL_FILE = File(None)

router = APIRouter()


class IdentifyRequest(BaseModel):
    image: str = Field(min_length=1)
    source: Literal["camera", "upload"]


class SoundIdentifyRequest(BaseModel):
    audio: str = Field(min_length=1)


class DescriptionIdentifyRequest(BaseModel):
    description: str = Field(min_length=1, max_length=4000)


class IdentificationRecordResponse(BaseModel):
    id: int
    user_id: int | None = None
    image_url: str
    result: dict[str, Any]
    identified_at: datetime


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _record_response(record: BirdIdentification) -> IdentificationRecordResponse:
    return IdentificationRecordResponse(
        id=record.id,
        user_id=record.user_id,
        image_url=record.image_url,
        result=record.result,
        identified_at=record.identified_at,
    )


def _decode(b64: str) -> bytes:
    try:
        return media.decode_base64(b64, settings.max_upload_bytes)
    except media.MediaTooLarge as exc:
        raise HTTPException(
            status_code=413, detail=error_detail(ErrorCode.BAD_REQUEST, str(exc))
        ) from exc
    except media.MediaError as exc:
        raise HTTPException(
            status_code=400, detail=error_detail(ErrorCode.BAD_REQUEST, str(exc))
        ) from exc


async def _check_quota(ledger: UsageLedger, user_id: int) -> None:
    try:
        await asyncio.to_thread(ledger.ensure_daily_capacity, user_id)
    except NotFound as exc:
        raise HTTPException(
            status_code=401,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "User not found"),
        ) from exc
    except LimitExceeded as exc:
        quota_reject_total.inc()
        await asyncio.to_thread(ledger.repository.log_event, user_id, "limit_reached")
        raise HTTPException(
            status_code=402,
            detail=error_detail(
                ErrorCode.LIMIT_EXCEEDED,
                str(exc),
                current=exc.current,
                limit=exc.limit,
            ),
        ) from exc


async def _identify(
    *,
    source: str,
    user_id: int | None,
    repository: Repository,
    ledger: UsageLedger,
    call: Callable[[], dict],
    content: bytes | None = None,
    content_type: str | None = None,
) -> JSONResponse:
    """Quota pre-check, AI call, normalization, usage increment, persistence."""
    identify_requests_total.labels(source=source).inc()
    if user_id is not None:
        await _check_quota(ledger, user_id)

    start_time = time.perf_counter()
    try:
        raw = await asyncio.to_thread(call)
        result = normalize_identification(raw)
    except TimeoutError as exc:
        ai_timeout_total.inc()
        logger.exception("AI timeout")
        raise HTTPException(
            status_code=502, detail=error_detail(ErrorCode.AI_TIMEOUT, "AI timeout")
        ) from exc
    except IdentificationFailed as exc:
        normalization_fail_total.labels(reason="identification_failed").inc()
        raise HTTPException(
            status_code=422,
            detail=error_detail(ErrorCode.IDENTIFICATION_FAILED, str(exc)),
        ) from exc
    except (InvalidResponseShape, SchemaViolation) as exc:
        normalization_fail_total.labels(reason=type(exc).__name__).inc()
        logger.exception("Invalid AI response")
        raise HTTPException(
            status_code=502,
            detail=error_detail(ErrorCode.INVALID_AI_RESPONSE, "Invalid AI response"),
        ) from exc
    except RuntimeError as exc:
        logger.exception("AI error")
        raise HTTPException(
            status_code=502,
            detail=error_detail(ErrorCode.SERVICE_UNAVAILABLE, "AI error"),
        ) from exc
    finally:
        identify_latency_seconds.observe(time.perf_counter() - start_time)

    image_url = ""
    if content is not None and content_type is not None:
        key = await upload_media(user_id, content, content_type)
        image_url = get_public_url(key)
        result = result.model_copy(update={"original_image": image_url})
    payload = result.to_payload()

    def _persist() -> BirdIdentification:
        if user_id is not None:
            return ledger.record_identification(user_id, image_url, payload)
        return repository.create_identification(
            user_id=user_id, image_url=image_url, result=payload
        )

    record = await asyncio.to_thread(_persist)
    logger.info(
        "Identified %s (confidence %s) as record %s",
        payload["mainBird"]["name"],
        payload["mainBird"]["confidence"],
        record.id,
    )
    return JSONResponse(
        content=payload, headers={"X-Identification-ID": str(record.id)}
    )


@router.post("/identify", responses=_ERROR_RESPONSES)
async def identify(
    body: IdentifyRequest,
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    mime, b64 = media.split_data_url(body.image)
    contents = _decode(b64)
    mime = mime or media.detect_image_mime(b64)
    return await _identify(
        source=body.source,
        user_id=user_id,
        repository=repository,
        ledger=ledger,
        call=lambda: identify_bird_image(b64, mime),
        content=contents,
        content_type=mime,
    )


@router.post("/upload", responses=_ERROR_RESPONSES)
async def upload(
    image: UploadFile | None = OPTIONAL_FILE,
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    if image is None:
        raise HTTPException(
            status_code=400,
            detail=error_detail(ErrorCode.BAD_REQUEST, "No file uploaded"),
        )
    limit = settings.max_upload_bytes
    contents = await image.read(limit + 1)
    if len(contents) > limit:
        raise HTTPException(
            status_code=413,
            detail=error_detail(ErrorCode.BAD_REQUEST, "payload too large"),
        )
    if not contents:
        raise HTTPException(
            status_code=400, detail=error_detail(ErrorCode.BAD_REQUEST, "empty payload")
        )
    b64 = base64.b64encode(contents).decode()
    mime = image.content_type or media.detect_image_mime(b64)
    if not mime.startswith("image/"):
        mime = media.detect_image_mime(b64)
    return await _identify(
        source="upload",
        user_id=user_id,
        repository=repository,
        ledger=ledger,
        call=lambda: identify_bird_image(b64, mime),
        content=contents,
        content_type=mime,
    )


@router.post("/identify/sound", responses=_ERROR_RESPONSES)
async def identify_sound(
    body: SoundIdentifyRequest,
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    mime, b64 = media.split_data_url(body.audio)
    try:
        audio_format = media.audio_format(mime)
    except media.MediaError as exc:
        raise HTTPException(
            status_code=400, detail=error_detail(ErrorCode.BAD_REQUEST, str(exc))
        ) from exc
    contents = _decode(b64)
    return await _identify(
        source="sound",
        user_id=user_id,
        repository=repository,
        ledger=ledger,
        call=lambda: identify_bird_sound(b64, audio_format),
        content=contents,
        content_type="audio/mpeg" if audio_format == "mp3" else "audio/wav",
    )


@router.post("/identify/description", responses=_ERROR_RESPONSES)
async def identify_description(
    body: DescriptionIdentifyRequest,
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
    ledger: UsageLedger = Depends(get_ledger),
):
    return await _identify(
        source="description",
        user_id=user_id,
        repository=repository,
        ledger=ledger,
        call=lambda: identify_bird_description(body.description),
    )


@router.get(
    "/identifications",
    response_model=list[IdentificationRecordResponse],
    responses={401: {"model": ErrorResponse}},
)
async def list_identifications(
    limit: int | None = Query(None, ge=1, le=500),
    user_id: int | None = Depends(rate_limit),
    ledger: UsageLedger = Depends(get_ledger),
):
    try:
        records = await asyncio.to_thread(ledger.recent_identifications, user_id, limit)
    except NotFound as exc:
        raise HTTPException(
            status_code=401,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "User not found"),
        ) from exc
    return [_record_response(r) for r in records]


@router.get(
    "/identifications/{identification_id}",
    response_model=IdentificationRecordResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_identification(
    identification_id: int,
    user_id: int | None = Depends(rate_limit),
    repository: Repository = Depends(get_repository),
):
    record = await asyncio.to_thread(repository.get_identification, identification_id)
    if record is None:
        raise HTTPException(
            status_code=404,
            detail=error_detail(ErrorCode.NOT_FOUND, "Identification not found"),
        )
    if record.user_id is not None and record.user_id != user_id:
        raise HTTPException(
            status_code=403,
            detail=error_detail(ErrorCode.FORBIDDEN, "Unauthorized access to identification"),
        )
    return _record_response(record)
