"""
Error taxonomy for the inventory lending engine.

Every error carries a stable ``kind`` string so workflow results and JSON
responses can report what went wrong without exposing raw remote bodies.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    kind = "app_error"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotConfigured(AppError):
    """No bearer token available from memory, settings store or config."""
    kind = "not_configured"
    http_status = 503


class RemoteError(AppError):
    """Base for failures talking to the remote inventory system."""
    kind = "remote_error"
    http_status = 502


class RefreshFailed(RemoteError):
    kind = "refresh_failed"


class NetworkError(RemoteError):
    kind = "network_error"


class HttpError(RemoteError):
    kind = "http_error"

    def __init__(self, status: int, body: str = "", hint: Optional[str] = None, message: str = ""):
        self.status = status
        self.body = body
        self.hint = hint
        text = message or f"EasyVerein API returned HTTP {status}"
        if hint:
            text = f"{text} - {hint}"
        super().__init__(text)


class MalformedResponse(RemoteError):
    kind = "malformed_response"


class InsufficientStock(AppError):
    kind = "insufficient_stock"
    http_status = 409

    def __init__(self, available: int, requested: int = 0, message: str = ""):
        self.available = available
        self.requested = requested
        super().__init__(message or f"Nicht genügend Bestand verfügbar. Verfügbar: {available}")


class NotFound(AppError):
    kind = "not_found"
    http_status = 404


class InvalidState(AppError):
    kind = "invalid_state"
    http_status = 409


class ValidationError(AppError):
    kind = "validation_error"
    http_status = 422


class PartialFailure(AppError):
    kind = "partial_failure"
    http_status = 207

    def __init__(self, message: str = "", errors=None):
        self.errors = list(errors or [])
        super().__init__(message or f"{len(self.errors)} item(s) failed")


def install_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.warning(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content={"success": False, "message": exc.message, "error_kind": exc.kind},
        )
