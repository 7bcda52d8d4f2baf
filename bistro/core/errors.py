"""
Bistro — Error taxonomy and FastAPI exception handlers

Every failure a caller can act on maps to one subclass of BistroError.
Unexpected exceptions are logged in full and answered with an opaque 500.
"""
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BistroError(Exception):
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(BistroError):
    """Malformed, missing or out-of-range input. Raised before any storage write."""
    status_code = 400


class ConflictError(BistroError):
    """The request is well formed but collides with current state (capacity, same-day booking)."""
    status_code = 409


class BusyError(BistroError):
    """A same-key request is still in flight; retry after `retry_after` seconds."""
    status_code = 429

    def __init__(self, message: str, retry_after: int, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.retry_after = retry_after

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["retry_after_seconds"] = self.retry_after
        return body


class NotFoundError(BistroError):
    status_code = 404


class ForbiddenError(BistroError):
    status_code = 403


def _field_path(loc: tuple) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "request"


def register_exception_handlers(app: FastAPI) -> None:
    """Register the handlers that turn domain errors into JSON responses."""

    @app.exception_handler(BistroError)
    async def handle_bistro_error(request: Request, exc: BistroError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        headers = None
        if isinstance(exc, BusyError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details: dict[str, str] = {}
        for error in exc.errors():
            details.setdefault(_field_path(tuple(error.get("loc", ()))), error.get("msg", "Invalid value"))
        return JSONResponse(
            status_code=400,
            content={"detail": "All fields are required and must be valid", "details": details},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
