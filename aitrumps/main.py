"""FastAPI application: entry point, middleware, routing, and lifecycle.

Creates the AI Top Trumps backend API with:
- All routes under the /api prefix
- CORS middleware (origins from settings, credentials allowed for the cookie)
- Request logging middleware (raw ASGI, no body buffering)
- Global exception handlers (HTTPException, validation, catch-all)
- Quota enforcement on every router except the exempt set below
- A lifespan handler that closes the provider client on shutdown

Run with: uvicorn aitrumps.main:app --reload
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.dependencies.models import Dependant
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from aitrumps.api import deps
from aitrumps.config import Settings, get_settings
from aitrumps.schemas import ErrorResponse

logger = logging.getLogger("aitrumps")

# Paths that never count against the daily quota. Checked at startup.
QUOTA_EXEMPT_ROUTES: frozenset[str] = frozenset({
    "/api/health",
    "/api/health/storage",
    "/api/auth/login",
    "/api/auth/validate",
    "/api/auth/logout",
})


# ---------------------------------------------------------------------------
# Request logging middleware (raw ASGI)
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware:
    """Access log line per request, with quota headroom when the route is limited.

    Raw ASGI, so response bodies are never buffered. Logs the caller address
    and the RateLimit-Remaining response header; never bodies, query
    strings, cookies, or auth headers.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "?")
        path = scope.get("path", "?")
        client = scope.get("client")
        fields = {
            "method": method,
            "path": path,
            "status": 0,
            "client_ip": client[0] if client else None,
            "quota_remaining": None,
        }
        started = time.monotonic()

        async def capture_start(message: Message) -> None:
            if message["type"] == "http.response.start":
                fields["status"] = message.get("status", 0)
                for name, value in message.get("headers", []):
                    if name.lower() == b"ratelimit-remaining":
                        fields["quota_remaining"] = int(value)
            await send(message)

        try:
            await self.app(scope, receive, capture_start)
        finally:
            fields["duration_ms"] = round((time.monotonic() - started) * 1000, 1)
            logger.info(
                "%s %s -> %d in %.1fms",
                method,
                path,
                fields["status"],
                fields["duration_ms"],
                extra=fields,
            )


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _http_exception_response(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Returns structured details as-is and wraps plain ones.

    Headers on the exception (RateLimit-*, Retry-After) are preserved.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=headers)

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error="HTTP_ERROR", message=str(exc.detail)).to_wire(),
        headers=headers,
    )


def _validation_error_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Summarises the first validation problem without leaking internals."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = " -> ".join(str(part) for part in first.get("loc", []))
        msg = first.get("msg", "Validation error")
        detail = f"{loc}: {msg}" if loc else msg
    else:
        detail = "Request validation failed."

    logger.warning(
        "Validation failed on %s %s: %s",
        request.method,
        request.url.path,
        detail,
        extra={"path": request.url.path, "reason": detail},
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="VALIDATION_ERROR", message=detail).to_wire(),
    )


def _unhandled_exception_response(request: Request, exc: Exception) -> JSONResponse:
    """Logs the full traceback server-side and returns a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="INTERNAL_ERROR",
            message="An unexpected error occurred.",
        ).to_wire(),
    )


# ---------------------------------------------------------------------------
# Quota exemption check
# ---------------------------------------------------------------------------


_QUOTA_DEPENDENCIES = (deps.enforce_quota, deps.enforce_open_quota)


def _depends_on(dependant: Dependant, calls: tuple[object, ...]) -> bool:
    return any(
        sub.call in calls or _depends_on(sub, calls) for sub in dependant.dependencies
    )


def _walk_routes(routes: Iterable[Any], prefix: str = "") -> Iterator[tuple[str, APIRoute]]:
    """Yields (full path, route) for every APIRoute, including nested ones.

    Containers with their own routes (nested routers, mounts) are
    descended into, joining their prefix or mount path.
    """
    for route in routes:
        if isinstance(route, APIRoute):
            yield prefix + route.path, route
            continue
        nested = getattr(route, "routes", None)
        if nested:
            segment = getattr(route, "prefix", None) or getattr(route, "path", None) or ""
            yield from _walk_routes(nested, prefix + segment)


def _assert_quota_exemptions(application: FastAPI) -> None:
    """Fails startup if an exempt route carries a quota dependency.

    Also fails if an exempt path has no route at all, so a renamed route
    can't silently drop out of the exempt set.
    """
    seen: set[str] = set()
    for path, route in _walk_routes(application.routes):
        if path not in QUOTA_EXEMPT_ROUTES:
            continue
        seen.add(path)
        if _depends_on(route.dependant, _QUOTA_DEPENDENCIES):
            raise RuntimeError(f"Quota-exempt route {path} is quota-limited.")

    missing = QUOTA_EXEMPT_ROUTES - seen
    if missing:
        raise RuntimeError(f"Quota-exempt routes not registered: {sorted(missing)}")


# ---------------------------------------------------------------------------
# App creation
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    yield
    proxy = deps._proxy
    if proxy is not None:
        await proxy.provider.close()
        logger.info("Provider client closed.")


def _register_routes(application: FastAPI) -> None:
    """Registers all API routers on the application."""
    from aitrumps.api.auth import router as auth_router
    from aitrumps.api.cards import images_router
    from aitrumps.api.cards import router as cards_router
    from aitrumps.api.generate import router as generate_router
    from aitrumps.api.health import router as health_router

    api = APIRouter(prefix="/api")

    # Exempt: never counted.
    api.include_router(health_router, tags=["health"])
    api.include_router(auth_router, prefix="/auth", tags=["auth"])

    # Signed-in routes: credential first, then the player's daily quota.
    limited = APIRouter(dependencies=[Depends(deps.enforce_quota)])
    limited.include_router(generate_router, tags=["generate"])
    limited.include_router(cards_router, tags=["cards"])
    api.include_router(limited)

    # Image redirects: counted by player when signed in, by address otherwise.
    open_limited = APIRouter(dependencies=[Depends(deps.enforce_open_quota)])
    open_limited.include_router(images_router, tags=["cards"])
    api.include_router(open_limited)

    application.include_router(api)


def _mount_dev_storage(application: FastAPI, settings: Settings) -> None:
    """Serves locally stored images at the locators LocalCardStorage returns.

    Only images/ is exposed; card records and logs stay private.
    """
    from aitrumps.hooks.storage import DEV_URL_PREFIX

    images_dir = Path(settings.local_storage_path) / "images"
    images_dir.mkdir(parents=True, exist_ok=True)
    application.mount(
        f"{DEV_URL_PREFIX}/images",
        StaticFiles(directory=images_dir),
        name="dev-storage-images",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Creates and configures the FastAPI application."""
    settings = settings or get_settings()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    application = FastAPI(
        title="AI Top Trumps",
        description="Card generation backend: auth, quota, AI proxy, and card storage",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --

    # CORS: answers preflight requests before any route dependency runs
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset", "Retry-After"],
    )
    application.add_middleware(RequestLoggingMiddleware)

    # -- Exception handlers --
    application.add_exception_handler(StarletteHTTPException, _http_exception_response)
    application.add_exception_handler(RequestValidationError, _validation_error_response)
    application.add_exception_handler(Exception, _unhandled_exception_response)

    # -- Services and routes --
    deps.init_services(settings)
    _register_routes(application)
    _assert_quota_exemptions(application)

    if settings.storage_backend == "local":
        _mount_dev_storage(application, settings)

    logger.info("AI Top Trumps backend ready (env=%s)", settings.app_env)
    return application


app = create_app()
