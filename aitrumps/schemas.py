"""Core data models — shared Pydantic types for the AI Top Trumps backend.

Every credential, quota decision, generation envelope, and stored card flows
through these types. They are the shared vocabulary between the auth layer,
the quota tracker, the generation proxy, and the storage backends.

Wire format is camelCase (the browser client's convention); Python attribute
names are snake_case. Every model accepts either spelling on input and
dumps camelCase with ``model_dump(by_alias=True)``.

This is a leaf module: it imports only from pydantic, the stdlib,
aitrumps.models and aitrumps.cards (pure helpers). Everything else imports from here.

Usage:
    from aitrumps.schemas import PlayerIdentity, GenerateRequest, StoredCard
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from aitrumps.cards import is_fully_recreatable
from aitrumps.models import ModelKind, kind_from_model_name


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for every model that crosses the HTTP boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    def to_wire(self) -> dict[str, Any]:
        """Dumps camelCase JSON-compatible data without unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class PlayerIdentity(WireModel):
    """Decoded session credential.

    Frozen: a credential is never mutated after issue. Valid iff its
    signature verifies and now < expires_at.
    """

    model_config = ConfigDict(frozen=True)

    player_code: str
    issued_at: datetime
    expires_at: datetime

    @property
    def quota_key(self) -> str:
        return f"player:{self.player_code}"


class PlayerData(WireModel):
    """Player profile returned by the login and validate endpoints."""

    player_code: str
    created_at: datetime
    last_active: datetime


class PlayerSession(BaseModel):
    """Server-side profile of a logged-in player (TTL = credential lifetime).

    Lives in SessionStore. Not an authorisation record; the signed
    credential is the only gate. Mutable: last_active moves on validate.
    """

    player_code: str
    created_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    def to_player_data(self) -> PlayerData:
        return PlayerData(
            player_code=self.player_code,
            created_at=self.created_at,
            last_active=self.last_active,
        )


class LoginRequest(WireModel):
    """Request body for POST /auth/login."""

    # Any, so a non-string code is reported by the route as a 400.
    player_code: Any = None


class LoginResponse(WireModel):
    """Response body for POST /auth/login and GET /auth/validate."""

    success: bool
    player_data: PlayerData | None = None
    token: str | None = None
    error: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


class QuotaRecord(BaseModel):
    """Request count for one identity-key inside one window.

    Frozen snapshot. The store hands out a new record on every hit.
    reset_at is when the window expires and the count starts over.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    count: int
    reset_at: datetime


# ---------------------------------------------------------------------------
# Generation envelopes
# ---------------------------------------------------------------------------


class GenerateRequest(WireModel):
    """Request body for POST /generate.

    prompt and model_kind are mandatory, but are declared optional here so
    that their absence reaches the proxy and is reported as a client error
    in the proxy's own vocabulary. Legacy clients send ``modelName`` (the raw
    provider model) instead of ``modelKind``; it is mapped to a kind.
    """

    prompt: str | None = None
    model_kind: ModelKind | None = None
    model_name: str | None = None
    card_id: str | None = None
    series: str | None = None

    @model_validator(mode="after")
    def _kind_from_legacy_name(self) -> "GenerateRequest":
        if self.model_kind is None and self.model_name:
            self.model_kind = kind_from_model_name(self.model_name)
        return self


class JsonEnvelope(WireModel):
    """Text-generation result: parsed JSON from the provider."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["json"] = "json"
    data: Any

    def to_wire(self) -> dict[str, Any]:
        # data may legitimately be JSON null, so don't drop None here.
        return {"kind": self.kind, "data": self.data}


class ImageEnvelope(WireModel):
    """Image-generation result: base64 JPEG plus an optional durable URL."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["image"] = "image"
    mime: Literal["image/jpeg"] = "image/jpeg"
    data: str
    persistent_url: str | None = None


GenerationEnvelope = Annotated[
    Union[JsonEnvelope, ImageEnvelope], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

Rarity = Literal["Common", "Rare", "Epic", "Legendary"]


class Statistic(WireModel):
    """One named card statistic."""

    name: str
    value: int | float


class CardIdea(WireModel):
    """A normalised card concept from the text model."""

    model_config = ConfigDict(frozen=True)

    title: str
    stats: list[Statistic]
    image_prompt: str


class IdeasRequest(WireModel):
    """Request body for POST /ideas."""

    prompt: str | None = None


class StoredCard(WireModel):
    """A persisted card record.

    Identity fields, generation-context fields and storage fields. Unknown
    fields sent by the client are preserved so a record round-trips intact.
    Immutable once stored: nothing updates a record in place.
    """

    model_config = ConfigDict(extra="allow")

    # Identity
    id: str = ""
    title: str = ""
    series: str | None = None
    stats: list[Statistic] = Field(default_factory=list)
    card_number: int | None = None
    total_cards: int | None = None
    rarity: Rarity | None = None

    # Generation context
    theme: str | None = None
    color_scheme: str | None = None
    image_style: str | None = None
    image_prompt: str | None = None

    # Storage
    persistent_image_url: str | None = None
    image_filename: str | None = None
    generated_at: str | None = None
    saved_at: str | None = None
    storage_location: str | None = None

    @property
    def is_fully_recreatable(self) -> bool:
        return is_fully_recreatable(self.to_wire())


class SaveCardResponse(WireModel):
    success: bool
    card_id: str
    storage_path: str
    message: str


class ListCardsResponse(WireModel):
    success: bool
    cards: list[dict[str, Any]]
    total: int
    series: str


class IdeasResponse(WireModel):
    success: bool
    ideas: list[CardIdea]
    rejected: list[dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorResponse(WireModel):
    """Error body for every failed request.

    error is a machine-readable code ("UNAUTHENTICATED", "STORAGE_ERROR")
    or, for quota denials, the fixed string "Daily rate limit exceeded".
    message is always human-readable and never a raw exception string.
    raw carries the provider text for unparseable model output.
    """

    model_config = ConfigDict(frozen=True)

    error: str
    message: str
    details: Any | None = None
    raw: str | None = None


class HealthCheck(WireModel):
    """One storage-health check result."""

    name: str
    ok: bool
    detail: str | None = None
