"""
Domain error taxonomy and the handlers that render it over HTTP.

Services raise these exceptions; endpoints never translate them by hand. Each
error knows its HTTP status and a stable machine-readable code, plus any
context the client needs to diagnose the failure.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CivicError(Exception):
    """Base class for every domain error."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "CivicError"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message, **self.context}


class ValidationError(CivicError):
    """Malformed or out-of-range input."""

    code = "ValidationError"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, field=field)
        self.field = field


class Forbidden(CivicError):
    """Role or ownership violation."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "Forbidden"


class NotFound(CivicError):
    """A referenced issue, department, user or notification does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"

    def __init__(self, resource: str, identifier: Any = None) -> None:
        super().__init__(
            f"{resource} not found",
            resource=resource,
            id=str(identifier) if identifier is not None else None,
        )
        self.resource = resource


class InvalidTransition(CivicError):
    """Requested status change violates the issue state machine."""

    code = "InvalidTransition"

    def __init__(self, current_status: Any, attempted_status: Any, reason: str) -> None:
        current = getattr(current_status, "value", current_status)
        attempted = getattr(attempted_status, "value", attempted_status)
        super().__init__(
            f"{reason} (current: {current}, attempted: {attempted})",
            current_status=current,
            attempted_status=attempted,
        )
        self.current_status = current
        self.attempted_status = attempted


class DuplicateLocation(CivicError):
    """An active issue already exists at the exact same coordinates."""

    code = "DuplicateLocation"


class NoDepartmentForCategory(CivicError):
    """No department owns the requested category."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NoDepartmentForCategory"

    def __init__(self, category: Any) -> None:
        value = getattr(category, "value", category)
        super().__init__(f"No department handles category {value}", category=value)
        self.category = value


class Conflict(CivicError):
    """Optimistic concurrency loss; the caller may re-fetch and retry."""

    status_code = status.HTTP_409_CONFLICT
    code = "Conflict"

    def __init__(self, message: str = "Resource was modified concurrently, please retry") -> None:
        super().__init__(message, retryable=True)


class MediaStoreError(CivicError):
    """The media store rejected or failed an upload."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "MediaStoreError"


async def civic_error_handler(request: Request, exc: CivicError) -> JSONResponse:
    if isinstance(exc, (Forbidden, Conflict)):
        logger.warning(
            "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message
        )
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    field = None
    if errors:
        location = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or None
    body = ValidationError("Request validation failed", field=field).to_dict()
    body["errors"] = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]
    return JSONResponse(body, status_code=status.HTTP_400_BAD_REQUEST)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach domain error rendering to the application."""
    app.add_exception_handler(CivicError, civic_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


__all__ = [
    "CivicError",
    "ValidationError",
    "Forbidden",
    "NotFound",
    "InvalidTransition",
    "DuplicateLocation",
    "NoDepartmentForCategory",
    "Conflict",
    "MediaStoreError",
    "register_exception_handlers",
]
