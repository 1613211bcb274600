"""Player auth routes: login, validate, logout.

All three are exempt from the daily quota (see QUOTA_EXEMPT_ROUTES in
main.py). Login exchanges a player code for a signed session credential,
delivered both as an HTTP-only cookie and in the body for clients that
prefer the Authorization header.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from aitrumps.api.deps import (
    SESSION_COOKIE,
    client_ip,
    extract_credential,
    get_auth_service,
    get_card_storage,
    get_current_player,
    get_session_store,
)
from aitrumps.audit import audit
from aitrumps.config import Settings, get_settings
from aitrumps.hooks.interfaces import AuthService, CardStorage, CredentialError, SessionStore
from aitrumps.schemas import (
    LoginRequest,
    LoginResponse,
    PlayerIdentity,
    PlayerSession,
    utc_now,
)

logger = logging.getLogger("aitrumps.auth")

router = APIRouter()


def _login_failed(status_code: int, error: str, message: str) -> HTTPException:
    """A failed login keeps the login response shape: success false plus error."""
    return HTTPException(
        status_code=status_code,
        detail=LoginResponse(success=False, error=error, message=message).to_wire(),
    )


def _session_for(identity: PlayerIdentity) -> PlayerSession:
    return PlayerSession(
        player_code=identity.player_code,
        created_at=identity.issued_at,
        last_active=utc_now(),
        expires_at=identity.expires_at,
    )


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    sessions: SessionStore = Depends(get_session_store),
    storage: CardStorage = Depends(get_card_storage),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Validates a player code and starts a session."""
    if not isinstance(body.player_code, str) or not body.player_code.strip():
        raise _login_failed(400, "INVALID_REQUEST", "Player code is required.")

    ip = client_ip(request)
    try:
        token, identity = auth_service.issue(body.player_code, client_ip=ip)
    except CredentialError as exc:
        await audit(
            storage,
            "warn",
            "Login failed",
            playerCode=body.player_code.strip().upper(),
            ip=ip,
        )
        raise _login_failed(
            401,
            "INVALID_PLAYER_CODE",
            "Invalid player code. Please check your code and try again.",
        ) from exc

    session = _session_for(identity)
    await sessions.save_session(session)
    await audit(storage, "info", "Login succeeded", playerCode=identity.player_code, ip=ip)

    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
    )
    return LoginResponse(
        success=True,
        player_data=session.to_player_data(),
        token=token,
    ).to_wire()


@router.get("/validate")
async def validate(
    player: PlayerIdentity = Depends(get_current_player),
    sessions: SessionStore = Depends(get_session_store),
) -> dict[str, Any]:
    """Confirms the credential and refreshes last-active time."""
    session = await sessions.touch(player.player_code)
    if session is None:
        # Credential outlived the in-memory profile (e.g. after a restart).
        session = _session_for(player)
        await sessions.save_session(session)
    return LoginResponse(success=True, player_data=session.to_player_data()).to_wire()


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    sessions: SessionStore = Depends(get_session_store),
) -> dict[str, Any]:
    """Ends the session. Always succeeds, even with a stale credential."""
    credential = extract_credential(request)
    if credential is not None:
        try:
            identity = auth_service.verify(credential)
        except CredentialError as exc:
            logger.info("Logout with unusable credential (%s)", exc.reason)
        else:
            await sessions.delete_session(identity.player_code)
            logger.info("Logout for %s", identity.player_code)

    response.delete_cookie(SESSION_COOKIE)
    return {"success": True, "message": "Logged out."}
