"""App configuration — environment variable loading with typed defaults.

Loads settings from .env file (via python-dotenv) and os.environ.
Real environment variables take precedence over .env file values.

Model name env vars (e.g. TEXT_MODEL=GEMINI_FLASH) are resolved to
actual API model IDs at load time via MODEL_MAP from aitrumps.models.

Startup is fail-fast: a missing JWT_SECRET, a quota bypass outside
development, or inconsistent quota thresholds raise ValueError from
get_settings(), so the process never comes up half-configured.

Usage:
    from aitrumps.config import get_settings
    settings = get_settings()
    print(settings.text_model)  # "gemini-2.5-flash"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from aitrumps.models import KIND_FAMILIES, MODEL_MAP

# Only load .env from the project root, never parent directories.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DOTENV_PATH = PROJECT_ROOT / ".env"

STORAGE_BACKENDS = ("local", "cloud", "gcs")
APP_ENVS = ("development", "uat", "production")

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Typed configuration for the AI Top Trumps backend.

    All fields except jwt_secret have defaults suitable for local
    development. Model fields store resolved API model IDs (not family names).
    """

    # App
    app_env: str
    app_port: int
    log_level: str
    cors_origins: list[str]

    # Auth
    jwt_secret: str
    jwt_algorithm: str
    session_ttl_hours: int
    player_codes: frozenset[str]

    # Storage
    storage_backend: str
    storage_bucket: str
    storage_region: str
    local_storage_path: str
    signed_url_ttl_seconds: int

    # Quota
    quota_soft_limit: int
    quota_hard_limit: int
    quota_delay_step_ms: int
    quota_max_delay_ms: int
    quota_disabled: bool
    quota_storage_uri: str

    # AI
    google_api_key: str
    text_model: str
    image_model: str
    text_timeout_seconds: float
    image_timeout_seconds: float

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def _resolve_model(env_var: str, value: str, kind: str) -> str:
    """Resolves a family-name string to an actual model ID via MODEL_MAP.

    Args:
        env_var: Name of the environment variable (for error messages).
        value: The family-name value from the environment (e.g. "GEMINI_FLASH").
        kind: The model kind the variable configures ("text" or "image").

    Returns:
        The resolved model ID string.

    Raises:
        ValueError: If the value doesn't name a model of the given kind.
    """
    families = KIND_FAMILIES[kind]
    if value in families:
        return MODEL_MAP[value]
    valid = ", ".join(sorted(families))
    raise ValueError(
        f"Invalid value for {env_var}: {value!r}. "
        f"Valid options: {valid}"
    )


def _split_csv(value: str) -> list[str]:
    """Splits a comma-separated string into a list of stripped, non-empty values."""
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def normalize_player_code(value: str) -> str:
    """Trims and upper-cases a player code. The one normalisation rule."""
    return value.strip().upper()


def _require_secret() -> str:
    secret = os.environ.get("JWT_SECRET", "").strip()
    if not secret:
        raise ValueError(
            "JWT_SECRET is not set. Refusing to start without a credential "
            "signing secret."
        )
    return secret


def _validate(settings: Settings) -> None:
    """Cross-field checks that can't be expressed as simple defaults."""
    if settings.app_env not in APP_ENVS:
        raise ValueError(
            f"Invalid APP_ENV: {settings.app_env!r}. "
            f"Valid options: {', '.join(APP_ENVS)}"
        )
    if settings.storage_backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"Invalid STORAGE_BACKEND: {settings.storage_backend!r}. "
            f"Valid options: {', '.join(STORAGE_BACKENDS)}"
        )
    if settings.quota_disabled and not settings.is_development:
        raise ValueError(
            "QUOTA_DISABLED is only allowed when APP_ENV=development "
            f"(current APP_ENV={settings.app_env!r})."
        )
    if settings.quota_soft_limit < 1 or settings.quota_hard_limit < 1:
        raise ValueError("Quota limits must be positive integers.")
    if settings.quota_soft_limit > settings.quota_hard_limit:
        raise ValueError(
            f"QUOTA_SOFT_LIMIT ({settings.quota_soft_limit}) must not exceed "
            f"QUOTA_HARD_LIMIT ({settings.quota_hard_limit})."
        )
    if not settings.quota_storage_uri.startswith("async+"):
        raise ValueError(
            f"Invalid QUOTA_STORAGE_URI: {settings.quota_storage_uri!r}. "
            "Use an async backend such as async+memory:// or async+redis://host:6379."
        )
    if not settings.player_codes:
        raise ValueError("PLAYER_CODES must contain at least one code.")


def _load_settings() -> Settings:
    """Loads configuration from .env file and environment variables.

    Returns:
        A fully resolved, validated Settings instance.

    Raises:
        ValueError: On missing secrets or inconsistent values.
    """
    load_dotenv(_DOTENV_PATH)

    settings = Settings(
        # App
        app_env=os.environ.get("APP_ENV", "development").strip().lower(),
        app_port=int(os.environ.get("APP_PORT", "3001")),
        log_level=os.environ.get("LOG_LEVEL", "info"),
        cors_origins=_split_csv(
            os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
        ),
        # Auth
        jwt_secret=_require_secret(),
        jwt_algorithm=os.environ.get("JWT_ALGORITHM", "HS256"),
        session_ttl_hours=int(os.environ.get("SESSION_TTL_HOURS", "24")),
        player_codes=frozenset(
            normalize_player_code(code)
            for code in _split_csv(os.environ.get("PLAYER_CODES", "TIGER34"))
        ),
        # Storage
        storage_backend=os.environ.get("STORAGE_BACKEND", "local").strip().lower(),
        storage_bucket=os.environ.get("STORAGE_BUCKET", "cards_storage"),
        storage_region=os.environ.get("STORAGE_REGION", "eu-west-2"),
        local_storage_path=os.environ.get(
            "LOCAL_STORAGE_PATH", str(PROJECT_ROOT / "dev-storage")
        ),
        signed_url_ttl_seconds=int(os.environ.get("SIGNED_URL_TTL_SECONDS", "86400")),
        # Quota
        quota_soft_limit=int(os.environ.get("QUOTA_SOFT_LIMIT", "50")),
        quota_hard_limit=int(os.environ.get("QUOTA_HARD_LIMIT", "100")),
        quota_delay_step_ms=int(os.environ.get("QUOTA_DELAY_STEP_MS", "500")),
        quota_max_delay_ms=int(os.environ.get("QUOTA_MAX_DELAY_MS", "10000")),
        quota_disabled=_parse_bool(os.environ.get("QUOTA_DISABLED", "false")),
        quota_storage_uri=os.environ.get("QUOTA_STORAGE_URI", "async+memory://").strip(),
        # AI
        google_api_key=os.environ.get("GOOGLE_API_KEY", ""),
        text_model=_resolve_model(
            "TEXT_MODEL",
            os.environ.get("TEXT_MODEL", "GEMINI_FLASH"),
            "text",
        ),
        image_model=_resolve_model(
            "IMAGE_MODEL",
            os.environ.get("IMAGE_MODEL", "IMAGEN_3"),
            "image",
        ),
        text_timeout_seconds=float(os.environ.get("TEXT_TIMEOUT_SECONDS", "10")),
        image_timeout_seconds=float(os.environ.get("IMAGE_TIMEOUT_SECONDS", "30")),
    )
    _validate(settings)
    return settings


_settings: Settings | None = None


def get_settings() -> Settings:
    """Returns the singleton Settings instance. Loads .env on first call."""
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings
