"""Exception types and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PlacemarksError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class GeoValidationError(PlacemarksError, ValueError):
    """Invalid coordinates, radius, minimum or limit. Never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UpstreamUnavailableError(PlacemarksError):
    """The place store or directory provider failed."""

    def __init__(self, message: str):
        super().__init__(message, status_code=503)


class CacheStorageError(PlacemarksError):
    """Persistent cache storage failed. Handled inside the cache layer."""


class StorageTimeoutError(CacheStorageError):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Storage operation timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(PlacemarksError)
    async def handle_placemarks_error(_request: Request, exc: PlacemarksError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
