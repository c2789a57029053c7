from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from birdlens.config import Settings
from birdlens.controllers import v1
from birdlens.db import init_db
from birdlens.dependencies import error_detail
from birdlens.logger import setup_logging
from birdlens.models import ErrorCode
from birdlens.services.storage import close_client, init_storage

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_storage(settings)
    await asyncio.to_thread(init_db, settings)
    yield
    await close_client()


app = FastAPI(
    title="BirdLens API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"detail": error_detail(ErrorCode.BAD_REQUEST, "Invalid request")},
    )


Instrumentator().instrument(app).expose(app)
