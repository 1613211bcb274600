"""Tests for aitrumps.hooks.auth — JwtAuthService issue/verify."""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from aitrumps.hooks.auth import JwtAuthService
from aitrumps.hooks.interfaces import AuthService, CredentialError

SECRET = "auth-test-secret"


class _Clock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    # Real time: jose checks exp against the wall clock before ours does.
    return _Clock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def service(clock) -> JwtAuthService:
    return JwtAuthService(secret=SECRET, player_codes=["tiger34"], clock=clock)


class TestConstruction:
    def test_is_auth_service(self, service) -> None:
        assert isinstance(service, AuthService)

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            JwtAuthService(secret="", player_codes=["TIGER34"])


class TestIssue:
    def test_valid_code(self, service, clock) -> None:
        token, identity = service.issue("TIGER34")
        assert identity.player_code == "TIGER34"
        assert identity.issued_at == clock.now
        assert identity.expires_at == clock.now + timedelta(hours=24)
        assert token

    @pytest.mark.parametrize("raw", ["tiger34", "  TIGER34  ", "Tiger34\n"])
    def test_code_normalised(self, service, raw) -> None:
        _, identity = service.issue(raw)
        assert identity.player_code == "TIGER34"

    @pytest.mark.parametrize("raw", ["WRONGCODE", "TIGER3", "TIGER345", ""])
    def test_invalid_code(self, service, raw) -> None:
        with pytest.raises(CredentialError) as exc_info:
            service.issue(raw)
        assert exc_info.value.reason == "invalid_code"

    def test_claims(self, service) -> None:
        token, identity = service.issue("TIGER34")
        claims = jwt.get_unverified_claims(token)
        assert claims["playerCode"] == "TIGER34"
        assert claims["exp"] - claims["iat"] == 24 * 3600
        assert claims["createdAt"] == identity.issued_at.isoformat()

    def test_rejection_logged_with_address(self, service, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="aitrumps.auth"):
            with pytest.raises(CredentialError):
                service.issue("nope", client_ip="10.1.2.3")
        record = caplog.records[-1]
        assert record.player_code == "NOPE"
        assert record.client_ip == "10.1.2.3"
        assert record.outcome == "rejected"


class TestVerify:
    def test_round_trip(self, service) -> None:
        token, issued = service.issue("TIGER34")
        assert service.verify(token) == issued

    def test_expired(self, service, clock) -> None:
        token, _ = service.issue("TIGER34")
        clock.now += timedelta(hours=24)
        with pytest.raises(CredentialError) as exc_info:
            service.verify(token)
        assert exc_info.value.reason == "expired"

    def test_valid_just_before_expiry(self, service, clock) -> None:
        token, _ = service.issue("TIGER34")
        clock.now += timedelta(hours=23, minutes=59)
        assert service.verify(token).player_code == "TIGER34"

    def test_wrong_secret(self, service) -> None:
        other = JwtAuthService(secret="another-secret", player_codes=["TIGER34"])
        token, _ = other.issue("TIGER34")
        with pytest.raises(CredentialError) as exc_info:
            service.verify(token)
        assert exc_info.value.reason == "invalid"

    def test_tampered_payload(self, service) -> None:
        token, _ = service.issue("TIGER34")
        header, _, signature = token.split(".")
        forged = jwt.encode({"playerCode": "ADMIN", "iat": 0, "exp": 9999999999}, "x")
        forged_payload = forged.split(".")[1]
        with pytest.raises(CredentialError) as exc_info:
            service.verify(f"{header}.{forged_payload}.{signature}")
        assert exc_info.value.reason == "invalid"

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c"])
    def test_garbage(self, service, garbage) -> None:
        with pytest.raises(CredentialError):
            service.verify(garbage)

    def test_missing_player_claim(self, service, clock) -> None:
        now = int(clock.now.timestamp())
        token = jwt.encode({"iat": now, "exp": now + 60}, SECRET, algorithm="HS256")
        with pytest.raises(CredentialError) as exc_info:
            service.verify(token)
        assert exc_info.value.reason == "invalid"
