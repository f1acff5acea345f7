"""
Exception handlers for the REST surface.

Every error leaves the API as ``{"detail", "code", "timestamp"}`` so the
client can branch on ``code`` (``NO_ACTIVE_SESSION``, ``PIPELINE_STATE_ERROR``,
``DEVICE_START_FAILED``, ...) without parsing messages.
"""

import logging
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from plainly.core.exceptions import PlainlyError

logger = logging.getLogger(__name__)


def _envelope(
    status_code: int, detail: str, code: str, timestamp: str | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "code": code,
            "timestamp": timestamp or datetime.now(UTC).isoformat(),
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the domain, validation and catch-all handlers to *app*."""

    @app.exception_handler(PlainlyError)
    async def plainly_error_handler(request: Request, exc: PlainlyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return _envelope(exc.status_code, exc.detail, exc.code, exc.timestamp)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _envelope(422, str(exc), "VALIDATION_ERROR")

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # Tracebacks stay in the log
        logger.error("Unhandled error on %s %s: %r", request.method, request.url.path, exc)
        return _envelope(500, "Internal server error", "INTERNAL_ERROR")
