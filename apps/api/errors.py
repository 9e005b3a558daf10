"""Domain error taxonomy and the FastAPI handler that renders it."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse
from starlette.requests import Request

logger = logging.getLogger(__name__)


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = dict(details or {})


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "unauthenticated"
    status_code = 401


class AuthorizationError(AppError):
    code = "forbidden"
    status_code = 403


class NotFoundError(AppError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class InsufficientCreditsError(AppError):
    code = "insufficient_credits"
    status_code = 402


class ExternalServiceError(AppError):
    """The bypass provider rejected, timed out on, or garbled a call."""

    code = "external_service_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        kind: str = "rejected",
        remote_code: Any = None,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"kind": kind, "remote_code": remote_code, "http_status": http_status}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.kind = kind
        self.remote_code = remote_code
        self.http_status = http_status


class ExternalTimeoutError(ExternalServiceError):
    code = "external_timeout"
    status_code = 504

    def __init__(self, message: str = "Request timeout", **kwargs: Any):
        kwargs.setdefault("kind", "timeout")
        super().__init__(message, **kwargs)


class PartialRenameError(ExternalServiceError):
    """Phase two of a rename failed after phase one removed the old UID."""

    code = "partial_rename_failure"

    def __init__(self, message: str, *, old_uid: str, new_uid: str, cause: ExternalServiceError):
        super().__init__(
            message,
            kind=cause.kind,
            remote_code=cause.remote_code,
            http_status=cause.http_status,
            details={"old_uid": old_uid, "new_uid": new_uid, "old_uid_removed": True},
        )
        self.old_uid = old_uid
        self.new_uid = new_uid
        self.cause = cause


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429


class PersistenceError(AppError):
    """Local write failed after the external side effect already happened."""

    code = "persistence_error"
    status_code = 500


def _error_payload(exc: AppError) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": exc.code, "message": exc.message}
    error.update(exc.details)
    return {"error": error, "detail": exc.message}


async def app_error_handler(request: Request, exc: AppError):
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error %s %s -> %s %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=_error_payload(exc))
