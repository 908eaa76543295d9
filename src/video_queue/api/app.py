"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException

from video_queue import __version__
from video_queue.api import admin_routes, object_routes, worker_routes
from video_queue.api.schemas import error_envelope
from video_queue.config import Settings
from video_queue.objects import InvalidStoragePathError, ObjectStorageError
from video_queue.queue.errors import (
    GroupNotFoundError,
    InvalidPayloadError,
    LeaseMismatchError,
    PhotoNotFoundError,
    QueueError,
    RetryCeilingExceededError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from video_queue.queue.reconciler import run_periodic_reconcile
from video_queue.queue.services import VideoQueueService

logger = logging.getLogger(__name__)

QUEUE_ERROR_RESPONSES: tuple[tuple[type[QueueError], int, str], ...] = (
    (TaskNotFoundError, 404, "task_not_found"),
    (GroupNotFoundError, 404, "group_not_found"),
    (PhotoNotFoundError, 404, "photo_not_found"),
    (LeaseMismatchError, 403, "lease_mismatch"),
    (InvalidPayloadError, 400, "invalid_payload"),
    (RetryCeilingExceededError, 409, "retry_ceiling_exceeded"),
    (TaskStateConflictError, 409, "state_conflict"),
)

HTTP_ERROR_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


def create_app(
    settings: Settings | None = None,
    *,
    service: VideoQueueService | None = None,
) -> FastAPI:
    """Build the API; a passed-in ``service`` is not closed on shutdown."""

    settings = settings or Settings.from_env()
    settings.validate_for_api()
    owns_service = service is None
    queue_service = service or VideoQueueService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        interval = settings.queue.reconcile_interval_seconds
        stop_event = asyncio.Event()
        reconcile_task = None
        if interval > 0:
            reconcile_task = asyncio.create_task(
                run_periodic_reconcile(
                    queue_service.reconciler,
                    interval_seconds=interval,
                    stop_event=stop_event,
                ),
            )
            logger.info("Periodic reconcile enabled (every %d s)", interval)
        yield
        stop_event.set()
        if reconcile_task is not None:
            await reconcile_task
        if owns_service:
            queue_service.close()

    app = FastAPI(title="Video Queue API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.service = queue_service

    app.include_router(worker_routes.router, prefix="/api/worker", tags=["Worker"])
    app.include_router(admin_routes.router, prefix="/api/admin", tags=["Admin"])
    app.include_router(object_routes.router, prefix="/objects", tags=["Objects"])

    @app.get("/healthz", tags=["Health"])
    def healthz() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    _register_error_handlers(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(QueueError)
    async def queue_error_handler(_: Request, error: QueueError) -> JSONResponse:
        for error_type, status_code, code in QUEUE_ERROR_RESPONSES:
            if isinstance(error, error_type):
                return JSONResponse(
                    status_code=status_code,
                    content=error_envelope(str(error), code=code),
                )
        return JSONResponse(status_code=400, content=error_envelope(str(error), code="queue_error"))

    @app.exception_handler(OperationalError)
    async def store_unavailable_handler(_: Request, error: OperationalError) -> JSONResponse:
        logger.warning("Task store unavailable: %s", error)
        return JSONResponse(
            status_code=503,
            content=error_envelope(
                "Task store temporarily unavailable; retry later.",
                code="store_unavailable",
                retryable=True,
            ),
        )

    @app.exception_handler(ObjectStorageError)
    async def object_storage_handler(_: Request, error: ObjectStorageError) -> JSONResponse:
        if isinstance(error, InvalidStoragePathError):
            return JSONResponse(
                status_code=400,
                content=error_envelope(str(error), code="invalid_payload"),
            )
        logger.error("Object storage failure: %s", error)
        return JSONResponse(status_code=502, content=error_envelope(str(error), code="storage_error"))

    @app.exception_handler(HTTPException)
    async def http_error_handler(_: Request, error: HTTPException) -> JSONResponse:
        code = HTTP_ERROR_CODES.get(error.status_code, "http_error")
        return JSONResponse(
            status_code=error.status_code,
            content=error_envelope(str(error.detail), code=code),
            headers=error.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, error: RequestValidationError) -> JSONResponse:
        first = error.errors()[0] if error.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid"
        return JSONResponse(
            status_code=422,
            content=error_envelope(message, code="validation_error"),
        )
