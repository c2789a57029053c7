import logging
import os
from asyncio import Lock
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from uuid import uuid4

import aioboto3
from aiobotocore.client import AioBaseClient
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException

from birdlens.config import Settings
from birdlens.models import ErrorCode
from birdlens.services.media import extension_for


logger = logging.getLogger("s3")  # Logger for S3 interactions


BUCKET = os.getenv("S3_BUCKET", "birdlens")
_settings: Settings | None = None

_client_ctx: AbstractAsyncContextManager[AioBaseClient] | None = None
_client: AioBaseClient | None = None
_client_lock: Lock = Lock()


def _setting(env: str, attr: str, default: str | None = None) -> str | None:
    return os.getenv(env, getattr(_settings, attr) if _settings is not None else default)


async def _make_client() -> AioBaseClient:
    session = aioboto3.Session()
    client_ctx = session.client(
        "s3",
        endpoint_url=_setting("S3_ENDPOINT", "s3_endpoint"),
        region_name=_setting("S3_REGION", "s3_region", "us-east-1"),
        aws_access_key_id=_setting("S3_ACCESS_KEY", "s3_access_key"),
        aws_secret_access_key=_setting("S3_SECRET_KEY", "s3_secret_key"),
    )
    try:
        client = await client_ctx.__aenter__()
    except (BotoCoreError, ClientError) as exc:
        try:
            await client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client after failed entry")
        logger.exception("Failed to create S3 client: %s", exc)
        raise
    global _client_ctx
    _client_ctx = client_ctx
    return client


async def get_client() -> AioBaseClient:
    """Return a cached aioboto3 client, creating it if needed."""
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = await _make_client()
        return _client


async def close_client() -> None:
    """Close the cached S3 client if it exists."""
    global _client, _client_ctx
    if _client_ctx is not None:
        try:
            await _client_ctx.__aexit__(None, None, None)
        except Exception:
            logger.exception("Failed to close S3 client")
    _client = None
    _client_ctx = None


async def init_storage(cfg: Settings) -> None:
    """Store settings and reinitialize the client."""
    global _settings
    _settings = cfg
    await close_client()


async def upload_media(user_id: int | None, data: bytes, content_type: str) -> str:
    """Upload bytes to S3 and return the object key."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    owner = str(user_id) if user_id is not None else "anonymous"
    key = f"{owner}/{ts}-{uuid4().hex}.{extension_for(content_type)}"
    bucket = _setting("S3_BUCKET", "s3_bucket", BUCKET)
    try:
        client = await get_client()
        await client.put_object(
            Bucket=bucket, Key=key, Body=data, ContentType=content_type
        )
    except (BotoCoreError, ClientError) as exc:
        logger.exception("S3 upload failed: %s", exc)
        raise HTTPException(
            status_code=503,
            detail={
                "code": ErrorCode.SERVICE_UNAVAILABLE.value,
                "message": "Media upload failed",
            },
        ) from exc
    return key


def get_public_url(key: str) -> str:
    """Return a public URL for the object."""
    bucket = _setting("S3_BUCKET", "s3_bucket", BUCKET)
    base = _setting("S3_PUBLIC_URL", "s3_public_url")
    if base:
        return f"{base.rstrip('/')}/{key}"

    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"

    region = _setting("S3_REGION", "s3_region", "us-east-1")
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
