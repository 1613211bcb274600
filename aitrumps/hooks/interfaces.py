"""Hook interfaces — abstract base classes for all swappable services.

These ABCs define the contracts between the request pipeline and the
infrastructure layer. Each one has a development implementation that lets
the backend run with no external services, and the storage interface has
a second, cloud implementation selected by configuration.

Leaf module: imports only from abc, datetime, typing (stdlib) and
aitrumps.schemas. No project services, no orchestration.

To add an implementation, subclass the relevant ABC and implement every
abstract method. Python will raise TypeError at instantiation if any method
is missing.

Usage:
    from aitrumps.hooks.interfaces import AuthService, CardStorage
    from aitrumps.hooks.interfaces import QuotaStore, SessionStore
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from aitrumps.schemas import PlayerIdentity, PlayerSession, QuotaRecord


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CredentialError(Exception):
    """A player code or session credential was rejected.

    reason is for server-side logs only ("invalid_code", "missing",
    "expired", "invalid"). Callers outside the auth layer must not expose
    it. Expired and tampered credentials look the same from outside.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StorageError(Exception):
    """A storage backend operation failed.

    transient marks failures worth retrying (backend 5xx, connection loss).
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ImageNotFound(StorageError):
    """The requested image does not exist in storage."""


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthService(ABC):
    """Issues and verifies player session credentials.

    The credential format (signed token, opaque session id) lives behind
    this interface. Route handlers never touch tokens directly; they get a
    PlayerIdentity back or a CredentialError.
    """

    @abstractmethod
    def issue(
        self, player_code: str, client_ip: str | None = None
    ) -> tuple[str, PlayerIdentity]:
        """Validates a player code and issues a session credential.

        Args:
            player_code: Raw code as submitted. Normalised (trim + upper)
                before comparison against the allow-list.
            client_ip: Caller address, for the audit log line.

        Returns:
            (credential, identity) with identity.expires_at = issued_at + TTL.

        Raises:
            CredentialError: If the normalised code is not on the allow-list.
        """
        ...

    @abstractmethod
    def verify(self, credential: str) -> PlayerIdentity:
        """Verifies a credential's signature and expiry.

        Args:
            credential: The credential string from cookie or header.

        Returns:
            The decoded PlayerIdentity.

        Raises:
            CredentialError: reason "expired" or "invalid".
        """
        ...


# ---------------------------------------------------------------------------
# Session storage (player profile, TTL = credential lifetime)
# ---------------------------------------------------------------------------


class SessionStore(ABC):
    """Ephemeral player profiles keyed by player code.

    Carries createdAt / lastActive for the validate endpoint. The store is
    responsible for TTL enforcement: get_session returns None for expired
    sessions. Callers never check expires_at manually.
    """

    @abstractmethod
    async def get_session(self, player_code: str) -> PlayerSession | None:
        """Returns the active session, or None if missing or expired."""
        ...

    @abstractmethod
    async def save_session(self, session: PlayerSession) -> None:
        """Creates or replaces the session for session.player_code."""
        ...

    @abstractmethod
    async def touch(self, player_code: str) -> PlayerSession | None:
        """Moves last_active to now and returns the session (None if absent)."""
        ...

    @abstractmethod
    async def delete_session(self, player_code: str) -> None:
        """Deletes the session. No-op if not found."""
        ...


# ---------------------------------------------------------------------------
# Quota storage
# ---------------------------------------------------------------------------


class QuotaStore(ABC):
    """Per-identity request counters with a fixed, hard-resetting window.

    hit() is the only write and must be atomic: two concurrent hits for
    the same key must produce two distinct consecutive counts. A key
    whose window has elapsed is forgotten, never partially decayed.
    """

    @abstractmethod
    async def hit(self, key: str, window: timedelta) -> QuotaRecord:
        """Increments the counter for key and returns the updated record.

        Args:
            key: Identity-key ("player:CODE" or a network address).
            window: Window length. The first hit after the previous
                window expired starts a new one with count 1.

        Returns:
            The record after the increment.
        """
        ...

    @abstractmethod
    async def peek(self, key: str) -> QuotaRecord | None:
        """Returns the current record without incrementing (None if fresh)."""
        ...


# ---------------------------------------------------------------------------
# Card storage (images, card records, audit logs)
# ---------------------------------------------------------------------------


class CardStorage(ABC):
    """Durable storage for generated images, card records, and audit logs.

    Two implementations satisfy identical behavioural contracts: the local
    filesystem (development) and cloud object storage (deployed). Keys
    follow the layout in aitrumps.cards. Selection happens once at startup.
    """

    backend_name: str = "abstract"

    @abstractmethod
    async def save_image(self, card_id: str, data: bytes, series: str | None) -> str:
        """Writes a JPEG under images/<series>/<date>/<card_id>.jpg.

        Returns:
            A locator URL for the image (local path or signed URL).
        """
        ...

    @abstractmethod
    async def save_card(self, card_id: str, record: dict[str, Any]) -> str:
        """Writes a card record as JSON under cards/<series>/<card_id>.json.

        The stored copy gains savedAt and storageLocation (the returned
        path) fields. The series is taken from record["series"] and sanitised.

        Returns:
            The storage path of the record.
        """
        ...

    @abstractmethod
    async def list_cards(self, series: str | None = None) -> list[dict[str, Any]]:
        """Returns all records (optionally for one series), newest first."""
        ...

    @abstractmethod
    async def get_image_signed_url(self, path: str) -> str:
        """Returns a fresh retrieval URL for a stored image.

        Raises:
            InvalidStoragePath: If path escapes images/.
            ImageNotFound: If nothing is stored at path.
        """
        ...

    @abstractmethod
    async def save_log(
        self, level: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        """Appends one JSON line to logs/<date>/<level>.jsonl.

        Must append, never overwrite earlier lines.
        """
        ...

    @abstractmethod
    async def get_storage_stats(self) -> dict[str, Any]:
        """Returns {totalFiles, images, cards, logs, backend, lastUpdated}."""
        ...
