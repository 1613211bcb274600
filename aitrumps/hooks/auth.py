"""JWT auth service — player-code login and signed session credentials.

Validates a submitted player code against a configured allow-list and
issues an HS256-signed JWT (python-jose) that expires 24 hours after issue.
verify() checks signature and expiry and hands back a PlayerIdentity.

The two verify failure modes ("expired", "invalid") are distinguished in
CredentialError.reason for logging only. The HTTP layer maps both to the
same 403 response.

Usage:
    from aitrumps.hooks.auth import JwtAuthService

    auth = JwtAuthService(secret="...", player_codes={"TIGER34"})
    token, identity = auth.issue(" tiger34 ", client_ip="10.0.0.1")
    identity = auth.verify(token)
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from aitrumps.config import normalize_player_code
from aitrumps.hooks.interfaces import AuthService, CredentialError
from aitrumps.schemas import PlayerIdentity

logger = logging.getLogger("aitrumps.auth")

DEFAULT_TTL = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JwtAuthService(AuthService):
    """Allow-list login with python-jose signed credentials.

    Args:
        secret: Signing secret. Empty → ValueError (no unsigned fallback).
        player_codes: Valid codes; normalised to upper case here.
        algorithm: JWS algorithm, HS256 by default.
        ttl: Credential lifetime.
        clock: Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        secret: str,
        player_codes: Iterable[str],
        algorithm: str = "HS256",
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not secret:
            raise ValueError("JwtAuthService requires a non-empty signing secret.")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = ttl
        self._clock = clock
        self._player_codes = frozenset(normalize_player_code(c) for c in player_codes)

    def issue(
        self, player_code: str, client_ip: str | None = None
    ) -> tuple[str, PlayerIdentity]:
        """Validates the code and signs a credential for it.

        Args:
            player_code: Raw submitted code.
            client_ip: Caller address, logged with the attempt.

        Returns:
            (token, identity).

        Raises:
            CredentialError: reason "invalid_code" when not on the allow-list.
        """
        code = normalize_player_code(player_code)
        if code not in self._player_codes:
            logger.warning(
                "Login rejected for code %s from %s",
                code,
                client_ip or "unknown",
                extra={"player_code": code, "client_ip": client_ip, "outcome": "rejected"},
            )
            raise CredentialError("invalid_code")

        issued_at = self._clock().replace(microsecond=0)
        identity = PlayerIdentity(
            player_code=code,
            issued_at=issued_at,
            expires_at=issued_at + self._ttl,
        )
        claims = {
            "playerCode": code,
            "iat": int(identity.issued_at.timestamp()),
            "exp": int(identity.expires_at.timestamp()),
            "createdAt": identity.issued_at.isoformat(),
        }
        token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        logger.info(
            "Login accepted for code %s from %s",
            code,
            client_ip or "unknown",
            extra={"player_code": code, "client_ip": client_ip, "outcome": "accepted"},
        )
        return token, identity

    def verify(self, credential: str) -> PlayerIdentity:
        """Decodes and checks a credential.

        Raises:
            CredentialError: "expired" past exp, "invalid" for anything else
                (bad signature, malformed token, missing claims).
        """
        try:
            claims = jwt.decode(credential, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise CredentialError("expired") from exc
        except JWTError as exc:
            raise CredentialError("invalid") from exc

        code = claims.get("playerCode")
        issued = claims.get("iat")
        expires = claims.get("exp")
        if not isinstance(code, str) or not code or issued is None or expires is None:
            raise CredentialError("invalid")

        identity = PlayerIdentity(
            player_code=code,
            issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )
        if self._clock() >= identity.expires_at:
            raise CredentialError("expired")
        return identity
