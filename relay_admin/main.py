"""ASGI entry-point for the relay admin control plane.

This module constructs the FastAPI instance, wires global middleware and
exception handlers, registers all route groups and exposes ``app``.
"""

from __future__ import annotations

import logging
import os
import traceback
from contextvars import ContextVar
from time import perf_counter
from typing import Awaitable, Callable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from relay_admin import APP_ENV
from relay_admin.errors import AdminError
from relay_admin.settings import get_settings
from relay_admin.utils.logger import configure_logging, logger
from relay_admin.utils.security_utils import resolve_allowed_origin

# Rate limiter (IP-based by default)
limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])

CORS_ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"


def _error(status_code: int, reason: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": reason})


def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    """Log the full traceback for an exception that would otherwise be a bare 500."""
    error_logger = logging.getLogger("uvicorn.error")
    error_logger.error(
        "UNHANDLED %s at %s %s\n%s",
        type(exc).__name__,
        request.method,
        request.url.path,
        "".join(traceback.format_tb(exc.__traceback__)),
    )
    return _error(500, "Internal server error")


def validation_reason(exc: RequestValidationError) -> str:
    errors = exc.errors()
    missing = [str(err["loc"][-1]) for err in errors if err.get("type") == "missing"]
    if missing:
        return "Missing required fields: " + ", ".join(missing)
    first = errors[0] if errors else {}
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return f"Invalid {field}: {first.get('msg', 'invalid value')}"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request-level context vars for structured logging."""

    _request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        start = perf_counter()
        request_id = request.headers.get("X-Request-Id", os.urandom(4).hex())
        token = self._request_id_ctx.set(request_id)
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (perf_counter() - start) * 1000
            logger.info(
                "request.complete",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code if response is not None else 500,
                    "duration_ms": round(duration_ms, 2),
                    "request_id": request_id,
                },
            )
            self._request_id_ctx.reset(token)
        return response


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp CORS headers on every response, errors and preflights included.

    Starlette's ``CORSMiddleware`` omits the header for unlisted origins; the
    dashboard contract is to echo the first allow-list entry instead.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        if request.method == "OPTIONS":
            response: Response = Response(status_code=204)
        else:
            try:
                response = await call_next(request)
            except Exception as exc:  # noqa: BLE001
                response = _unhandled(request, exc)

        settings_provider = request.app.dependency_overrides.get(get_settings, get_settings)
        allowed = resolve_allowed_origin(request.headers.get("origin"), settings_provider().allowed_origins)
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = allowed
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        return response


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Relay Admin Control-Plane API",
        version="0.1.0",
        docs_url="/docs" if APP_ENV != "production" else None,
        redoc_url=None,
        openapi_url="/openapi.json" if APP_ENV != "production" else None,
    )

    # Global middleware (last added runs outermost)
    app.add_middleware(RequestContextMiddleware)
    # Rate limiting middleware (SlowAPI expects limiter via app.state)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(CORSHeadersMiddleware)

    from slowapi.errors import RateLimitExceeded  # noqa: WPS433  (runtime import)
    from slowapi import _rate_limit_exceeded_handler

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(AdminError)
    async def handle_admin_error(request: Request, exc: AdminError):
        if exc.status_code >= 500:
            logger.warning(
                "request.failed",
                extra={"path": request.url.path, "status_code": exc.status_code, "error": exc.reason},
            )
        return _error(exc.status_code, exc.reason)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error(400, validation_reason(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def log_unhandled_exceptions(request: Request, exc: Exception):
        return _unhandled(request, exc)

    # Health check
    @app.get("/")
    async def root() -> Dict[str, str]:  # pylint: disable=unused-variable
        return {"status": "ok"}

    from relay_admin.routers import (
        consensus_routes,
        decisions_routes,
        info_routes,
        media_routes,
        moderation_routes,
        realness_routes,
        relay_routes,
        summary_routes,
        zendesk_routes,
    )

    app.include_router(info_routes.router)
    app.include_router(moderation_routes.router)
    app.include_router(relay_routes.router)
    app.include_router(decisions_routes.router)
    app.include_router(media_routes.router)
    app.include_router(consensus_routes.router)
    app.include_router(realness_routes.router)
    app.include_router(summary_routes.router)
    app.include_router(zendesk_routes.router)

    return app


# The object uvicorn imports (``uvicorn relay_admin.main:app``)
app = create_app()
