"""
FastAPI application entry point for the BandSync backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bandsync.config import get_settings
from bandsync.errors import BandSyncError, PartialFailureError
from bandsync.routes import router
from bandsync.schemas import ErrorResponse

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 403, 404, 409, 500, 502, 503)
}


async def handle_bandsync_error(request: Request, exc: BandSyncError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = ErrorResponse(
        error=type(exc).__name__,
        detail=exc.message,
        retryable=exc.retryable,
    )
    if isinstance(exc, PartialFailureError):
        body.completed = exc.completed
        body.pending = exc.pending
        body.resource_id = exc.resource_id
        content = body.model_dump()
    else:
        content = body.model_dump(include={"error", "detail", "retryable"})
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="BandSync Backend", version="0.1.0")
    app.add_exception_handler(BandSyncError, handle_bandsync_error)
    app.include_router(router, prefix=settings.api_prefix, responses=ERROR_RESPONSES)
    return app


app = create_app()
