"""Shared test fixtures for the AI Top Trumps backend.

Environment defaults are set at import time, before any test module
imports aitrumps.main (which builds the app on import).

Factory-pattern fixtures return callables accepting **overrides; service
fixtures return fresh, isolated instances per test so quota counters and
stored files never leak between tests.

Fixtures:
    mock_provider: Factory for MockProvider instances
    make_card: Factory for fully recreatable card record dicts
    make_identity: Factory for PlayerIdentity instances
    storage: LocalCardStorage on a temp directory
    sleeps / fake_sleep: Records requested delays instead of sleeping
    auth_service, tracker, proxy, sessions: Fresh service instances
    client: httpx.AsyncClient against the app with the services above
    auth_headers: Bearer header for a valid TIGER34 credential
"""

import os
import tempfile

os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-production")
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="aitrumps-test-"))
os.environ["APP_ENV"] = "development"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["GOOGLE_API_KEY"] = ""
os.environ["QUOTA_DISABLED"] = "false"

from datetime import datetime, timedelta, timezone  # noqa: E402
from uuid import uuid4  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport  # noqa: E402

from aitrumps.ai.providers.mock import MockProvider  # noqa: E402
from aitrumps.ai.proxy import GenerationProxy  # noqa: E402
from aitrumps.ai.retry import RetryPolicy  # noqa: E402
from aitrumps.hooks.auth import JwtAuthService  # noqa: E402
from aitrumps.hooks.quota_store import LimitsQuotaStore  # noqa: E402
from aitrumps.hooks.sessions import InMemorySessionStore  # noqa: E402
from aitrumps.hooks.storage import LocalCardStorage  # noqa: E402
from aitrumps.models import GEMINI_FLASH, IMAGEN_3  # noqa: E402
from aitrumps.quota import QuotaPolicy, QuotaTracker  # noqa: E402
from aitrumps.schemas import PlayerIdentity  # noqa: E402

TEST_SECRET = "unit-test-signing-secret"
TEST_CODE = "TIGER34"


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_provider():
    """Returns a factory function for creating MockProvider instances."""

    def _make(**kwargs) -> MockProvider:
        return MockProvider(**kwargs)

    return _make


@pytest.fixture
def make_card():
    """Returns a factory for card record dicts (wire form).

    Defaults produce a fully recreatable record with a unique id.
    Override any field via kwargs.
    """

    def _make(**overrides) -> dict:
        record = {
            "id": f"card-{uuid4().hex[:8]}",
            "title": "Tyrannosaurus Rex",
            "series": "Dinosaurs",
            "stats": [
                {"name": "Strength", "value": 95},
                {"name": "Speed", "value": 40},
                {"name": "Intelligence", "value": 30},
            ],
            "cardNumber": 1,
            "totalCards": 10,
            "rarity": "Legendary",
            "theme": "Prehistoric",
            "colorScheme": "jungle",
            "imageStyle": "photorealistic",
            "imagePrompt": "A T-Rex roaring in a misty jungle",
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def make_identity():
    """Returns a factory for PlayerIdentity instances."""

    def _make(**overrides) -> PlayerIdentity:
        issued = datetime.now(timezone.utc).replace(microsecond=0)
        defaults = {
            "player_code": TEST_CODE,
            "issued_at": issued,
            "expires_at": issued + timedelta(hours=24),
        }
        defaults.update(overrides)
        return PlayerIdentity(**defaults)

    return _make


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested through fake_sleep, in order."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def storage(tmp_path) -> LocalCardStorage:
    return LocalCardStorage(base_path=tmp_path / "storage")


@pytest.fixture
def provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def auth_service() -> JwtAuthService:
    return JwtAuthService(secret=TEST_SECRET, player_codes=[TEST_CODE])


@pytest.fixture
def quota_policy() -> QuotaPolicy:
    return QuotaPolicy()


@pytest.fixture
def tracker(quota_policy, fake_sleep) -> QuotaTracker:
    return QuotaTracker(LimitsQuotaStore(), quota_policy, sleep=fake_sleep)


@pytest.fixture
def proxy(provider, storage, fake_sleep) -> GenerationProxy:
    return GenerationProxy(
        provider=provider,
        storage=storage,
        text_model=GEMINI_FLASH,
        image_model=IMAGEN_3,
        retry_policy=RetryPolicy(),
        sleep=fake_sleep,
    )


@pytest.fixture
def sessions() -> InMemorySessionStore:
    return InMemorySessionStore()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(storage, tracker, proxy, auth_service, sessions):
    """Async test client wired to the app with isolated services."""
    from aitrumps.api import deps
    from aitrumps.main import app

    app.dependency_overrides.update({
        deps.get_card_storage: lambda: storage,
        deps.get_quota_tracker: lambda: tracker,
        deps.get_proxy: lambda: proxy,
        deps.get_auth_service: lambda: auth_service,
        deps.get_session_store: lambda: sessions,
        deps.is_quota_disabled: lambda: False,
    })
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    yield httpx.AsyncClient(transport=transport, base_url="http://test")
    app.dependency_overrides.clear()


@pytest.fixture
def auth_token(auth_service) -> str:
    token, _ = auth_service.issue(TEST_CODE)
    return token


@pytest.fixture
def auth_headers(auth_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}
