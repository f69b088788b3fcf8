"""
Error taxonomy and FastAPI error handling
=========================================

Purpose:
- Typed exceptions that distinguish client-input problems, "no agent
  available" and unexpected store failures, plus handlers that render them
  into one JSON error envelope.

Notes:
- `NoCapacityError` is transient: callers should retry later, it is not a
  client error.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ContactCenterError(Exception):
    """Base exception for the contact center service."""

    def __init__(
        self,
        message: str,
        code: str = "CC_000",
        category: str = "system",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}
        super().__init__(message)


class ValidationError(ContactCenterError):
    """Missing or malformed input - 400."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "CC_400", "user", details)


class NotFoundError(ContactCenterError):
    """Resource not found - 404."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "CC_404", "user", details)


class NoCapacityError(ContactCenterError):
    """No online agent can take a new case - 503."""

    def __init__(
        self,
        message: str = "All agents are busy or offline. Please try again later.",
        retry_after: int | None = 30,
        details: dict[str, Any] | None = None,
    ):
        d = dict(details or {})
        if retry_after is not None:
            d["retry_after"] = retry_after
        super().__init__(message, "CC_503", "transient", d)


class InternalError(ContactCenterError):
    """Unexpected data-store or upstream failure - 500."""

    def __init__(self, message: str = "Internal server error.", details: dict[str, Any] | None = None):
        super().__init__(message, "CC_500", "system", details)


EXCEPTION_STATUS_MAP = {
    ValidationError: 400,
    NotFoundError: 404,
    InternalError: 500,
    NoCapacityError: 503,
}


def error_body(
    code: str,
    message: str,
    category: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "category": category,
            "details": details or None,
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }


def get_request_id(request: Request) -> str:
    """Get or create request ID for correlation."""
    request_id = request.headers.get("X-Request-ID") or getattr(request.state, "request_id", None)
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


async def request_id_middleware(request: Request, call_next: Callable) -> Response:
    request_id = get_request_id(request)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def contact_center_exception_handler(request: Request, exc: ContactCenterError) -> JSONResponse:
    request_id = get_request_id(request)
    status = EXCEPTION_STATUS_MAP.get(type(exc), 500)

    logger.warning(
        "Request failed: %s",
        exc.message,
        extra={
            "request_id": request_id,
            "context": {"error_code": exc.code, "category": exc.category, "path": request.url.path},
        },
    )

    headers = {"X-Request-ID": request_id}
    if retry_after := exc.details.get("retry_after"):
        headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=status,
        content=error_body(exc.code, exc.message, exc.category, exc.details, request_id),
        headers=headers,
    )


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI's request validation failures in the 400 envelope."""
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    return contact_center_exception_handler(
        request,
        ValidationError("Invalid request.", details={"fields": [f for f in fields if f]}),
    )


def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected exceptions become a 500 with a generic message."""
    request_id = get_request_id(request)
    logger.error("Unhandled exception", extra={"request_id": request_id}, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body("CC_500", "Internal server error.", "system", request_id=request_id),
        headers={"X-Request-ID": request_id},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.middleware("http")(request_id_middleware)
    app.add_exception_handler(ContactCenterError, contact_center_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
