"""Shared FastAPI dependencies: auth, quota, storage, and proxy injection.

Module-level singletons for each service. Route handlers access them via
FastAPI's Depends() system, never by importing implementations directly.
init_services() builds them once from Settings at startup; tests swap
individual providers with app.dependency_overrides.

Usage:
    from aitrumps.api.deps import get_current_player, get_card_storage

    @router.get("/something")
    async def do_thing(
        player: PlayerIdentity = Depends(get_current_player),
        storage: CardStorage = Depends(get_card_storage),
    ): ...
"""

import logging
from datetime import timedelta

from fastapi import Depends, HTTPException, Request, Response

from aitrumps.ai.providers.base import ProviderClient
from aitrumps.ai.proxy import GenerationProxy
from aitrumps.ai.retry import RetryPolicy
from aitrumps.audit import audit
from aitrumps.config import Settings
from aitrumps.hooks.auth import JwtAuthService
from aitrumps.hooks.interfaces import (
    AuthService,
    CardStorage,
    CredentialError,
    SessionStore,
)
from aitrumps.hooks.quota_store import LimitsQuotaStore
from aitrumps.hooks.sessions import InMemorySessionStore
from aitrumps.quota import (
    RATE_LIMIT_ERROR,
    WINDOW_LABEL,
    QuotaDecision,
    QuotaExceeded,
    QuotaPolicy,
    QuotaTracker,
    quota_key,
)
from aitrumps.schemas import ErrorResponse, PlayerIdentity

logger = logging.getLogger("aitrumps")

SESSION_COOKIE = "aitrumps_session"

# One message for expired and tampered credentials alike.
_FORBIDDEN_MESSAGE = "Invalid or expired session."

# ---------------------------------------------------------------------------
# Service singletons (set by init_services() at startup)
# ---------------------------------------------------------------------------

_auth_service: AuthService | None = None
_session_store: SessionStore = InMemorySessionStore()
_quota_tracker: QuotaTracker | None = None
_card_storage: CardStorage | None = None
_proxy: GenerationProxy | None = None
_quota_disabled: bool = False


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_storage(settings: Settings) -> CardStorage:
    """Builds the storage backend named by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is not recognised.
    """
    if settings.storage_backend == "local":
        from aitrumps.hooks.storage import LocalCardStorage

        return LocalCardStorage(base_path=settings.local_storage_path)

    if settings.storage_backend == "cloud":
        # Local import keeps boto3 off the import path of local-only setups.
        from aitrumps.hooks.cloud_storage import S3CardStorage

        return S3CardStorage(
            bucket=settings.storage_bucket,
            region=settings.storage_region,
            url_ttl=settings.signed_url_ttl_seconds,
        )

    if settings.storage_backend == "gcs":
        from aitrumps.hooks.gcs_storage import GcsCardStorage

        return GcsCardStorage(
            bucket=settings.storage_bucket,
            url_ttl=settings.signed_url_ttl_seconds,
        )

    raise ValueError(
        f"Unknown storage backend: {settings.storage_backend!r}. "
        f"Expected 'local', 'cloud' or 'gcs'."
    )


def create_provider(settings: Settings) -> ProviderClient:
    """Builds the Gemini provider, or the mock when no API key is set.

    The mock fallback is development-only; elsewhere a missing key is a
    configuration error.
    """
    if settings.google_api_key:
        from aitrumps.ai.providers.gemini import GeminiProvider

        return GeminiProvider(api_key=settings.google_api_key)

    if settings.is_development:
        from aitrumps.ai.providers.mock import MockProvider

        logger.warning("GOOGLE_API_KEY not set; using the mock provider.")
        return MockProvider()

    raise ValueError("GOOGLE_API_KEY is required outside development.")


def create_quota_policy(settings: Settings) -> QuotaPolicy:
    return QuotaPolicy(
        soft_limit=settings.quota_soft_limit,
        hard_limit=settings.quota_hard_limit,
        delay_step=timedelta(milliseconds=settings.quota_delay_step_ms),
        max_delay=timedelta(milliseconds=settings.quota_max_delay_ms),
    )


def init_services(settings: Settings) -> None:
    """Builds every singleton from settings. Called once by create_app()."""
    global _auth_service, _quota_tracker, _card_storage, _proxy, _quota_disabled

    _auth_service = JwtAuthService(
        secret=settings.jwt_secret,
        player_codes=settings.player_codes,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(hours=settings.session_ttl_hours),
    )
    _quota_tracker = QuotaTracker(
        LimitsQuotaStore(settings.quota_storage_uri), create_quota_policy(settings)
    )
    _card_storage = create_storage(settings)
    _proxy = GenerationProxy(
        provider=create_provider(settings),
        storage=_card_storage,
        text_model=settings.text_model,
        image_model=settings.image_model,
        text_timeout=settings.text_timeout_seconds,
        image_timeout=settings.image_timeout_seconds,
        retry_policy=RetryPolicy(),
    )
    _quota_disabled = settings.quota_disabled
    if _quota_disabled:
        logger.warning("Quota enforcement is DISABLED (development only).")

    logger.info(
        "Services initialised: storage=%s, text_model=%s, image_model=%s",
        _card_storage.backend_name,
        settings.text_model,
        settings.image_model,
    )


# ---------------------------------------------------------------------------
# Dependency providers
# ---------------------------------------------------------------------------


def _unavailable(name: str) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail=ErrorResponse(
            error="SERVICE_UNAVAILABLE",
            message=f"{name} is not yet available. Server is starting up.",
        ).to_wire(),
    )


def get_auth_service() -> AuthService:
    """Returns the auth service singleton."""
    if _auth_service is None:
        raise _unavailable("Auth service")
    return _auth_service


def get_session_store() -> SessionStore:
    """Returns the session store singleton."""
    return _session_store


def get_quota_tracker() -> QuotaTracker:
    if _quota_tracker is None:
        raise _unavailable("Quota tracker")
    return _quota_tracker


def get_card_storage() -> CardStorage:
    """Returns the card storage singleton."""
    if _card_storage is None:
        raise _unavailable("Card storage")
    return _card_storage


def get_proxy() -> GenerationProxy:
    """Returns the generation proxy singleton."""
    if _proxy is None:
        raise _unavailable("Generation proxy")
    return _proxy


def is_quota_disabled() -> bool:
    return _quota_disabled


# ---------------------------------------------------------------------------
# Auth dependencies
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str | None:
    """Caller address as seen by the ASGI server."""
    return request.client.host if request.client else None


def extract_credential(request: Request) -> str | None:
    """Reads the session credential: cookie first, then Bearer header."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        return cookie

    authorization = request.headers.get("authorization")
    if not authorization:
        return None
    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def _verify(request: Request, credential: str, auth_service: AuthService) -> PlayerIdentity:
    try:
        identity = auth_service.verify(credential)
    except CredentialError as exc:
        logger.info(
            "Credential rejected (%s) on %s",
            exc.reason,
            request.url.path,
            extra={"reason": exc.reason, "client_ip": client_ip(request)},
        )
        raise HTTPException(
            status_code=403,
            detail=ErrorResponse(error="FORBIDDEN", message=_FORBIDDEN_MESSAGE).to_wire(),
        ) from exc
    request.state.player = identity
    return identity


async def get_current_player(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> PlayerIdentity:
    """Requires a valid session credential.

    Raises:
        HTTPException: 401 when no credential is present, 403 when it is
            invalid or expired (one message for both).
    """
    credential = extract_credential(request)
    if credential is None:
        raise HTTPException(
            status_code=401,
            detail=ErrorResponse(
                error="UNAUTHENTICATED",
                message="Authentication required. Please log in with your player code.",
            ).to_wire(),
        )
    return _verify(request, credential, auth_service)


async def get_optional_player(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> PlayerIdentity | None:
    """Like get_current_player, but None when no credential is sent.

    A credential that is present but bad is still rejected with 403.
    """
    credential = extract_credential(request)
    if credential is None:
        return None
    return _verify(request, credential, auth_service)


# ---------------------------------------------------------------------------
# Quota dependency
# ---------------------------------------------------------------------------


async def _count_request(
    request: Request,
    response: Response,
    player: PlayerIdentity | None,
    tracker: QuotaTracker,
    storage: CardStorage,
) -> QuotaDecision:
    """Counts one request, applies the slowdown, and sets RateLimit-* headers.

    The headers are also left on request.state.quota_headers for handlers
    that return a Response object directly.

    Raises:
        HTTPException: 429 past the hard limit, with Retry-After.
    """
    ip = client_ip(request)
    try:
        decision = await tracker.acquire(quota_key(player, ip), ip)
    except QuotaExceeded as exc:
        decision = exc.decision
        headers = decision.headers(tracker.now())
        request.state.quota_headers = headers
        await audit(
            storage,
            "warn",
            "Rate limit exceeded",
            quotaKey=decision.key,
            ip=ip,
            count=decision.count,
            path=request.url.path,
        )
        raise HTTPException(
            status_code=429,
            detail={
                "error": RATE_LIMIT_ERROR,
                "message": (
                    f"You have reached the limit of {decision.limit} requests "
                    f"per {WINDOW_LABEL}. Please try again later."
                ),
                "resetTime": decision.reset_at.isoformat(),
                "limit": decision.limit,
                "window": WINDOW_LABEL,
            },
            headers={**headers, "Retry-After": headers["RateLimit-Reset"]},
        ) from exc

    headers = decision.headers(tracker.now())
    request.state.quota_headers = headers
    response.headers.update(headers)
    return decision


async def enforce_quota(
    request: Request,
    response: Response,
    player: PlayerIdentity = Depends(get_current_player),
    tracker: QuotaTracker = Depends(get_quota_tracker),
    storage: CardStorage = Depends(get_card_storage),
    disabled: bool = Depends(is_quota_disabled),
) -> QuotaDecision | None:
    """Counts the request against the player's daily quota.

    Depends on get_current_player, so a request without a valid credential
    is rejected with 401/403 before anything is counted.
    """
    if disabled:
        return None
    return await _count_request(request, response, player, tracker, storage)


async def enforce_open_quota(
    request: Request,
    response: Response,
    player: PlayerIdentity | None = Depends(get_optional_player),
    tracker: QuotaTracker = Depends(get_quota_tracker),
    storage: CardStorage = Depends(get_card_storage),
    disabled: bool = Depends(is_quota_disabled),
) -> QuotaDecision | None:
    """Quota for routes that also serve anonymous callers (image redirects).

    A signed-in player is counted by player code, anyone else by address.
    A credential that is present but bad is still rejected with 403.
    """
    if disabled:
        return None
    return await _count_request(request, response, player, tracker, storage)
