"""SlowAPI rate limiting setup."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from civictrack.core.config import settings


def rate_limit_key(request: Request) -> str:
    """Bucket authenticated callers by token, anonymous ones by address."""
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return f"token:{token[-24:]}"
    return get_remote_address(request)


def _build_limiter() -> Limiter:
    return Limiter(
        key_func=rate_limit_key,
        default_limits=[settings.RATE_LIMIT_DEFAULT],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = _build_limiter()


def rate_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    detail = getattr(exc, "detail", str(exc))
    response = JSONResponse(
        {"error": "RateLimited", "detail": f"Rate limit exceeded: {detail}"},
        status_code=429,
    )
    view_limit = getattr(request.state, "view_rate_limit", None)
    if view_limit is not None:
        response = limiter._inject_headers(response, view_limit)
    return response


class RateLimitMiddleware(SlowAPIMiddleware):
    exempt_paths = {
        "/metrics",
        "/health",
        "/api/v1/health/liveness",
        "/api/v1/health/readiness",
    }

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if request.url.path in self.exempt_paths:
            return await call_next(request)
        return await super().dispatch(request, call_next)
