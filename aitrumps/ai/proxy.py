"""Generation proxy: the only path from a request to the provider.

Takes a GenerateRequest from an authenticated player, calls the text or
image model through the injected ProviderClient, and returns exactly one
envelope shape per kind:

    text  → JsonEnvelope(data=<parsed JSON>)
    image → ImageEnvelope(data=<base64 JPEG>, persistent_url=<optional>)

Around every provider call sit a timeout (inside the provider), bounded
retries for transient failures (ai/retry.py) and one structured usage log
line (ai/usage.py). Failures surface as ProxyError subclasses, each
carrying the HTTP status and error code the route should answer with.

Image persistence is best-effort: when the request names both a card and
a series, the decoded bytes are written to card storage; if that write
fails, the failure is logged and audited and the image is still returned,
just without a persistent URL.

Dependencies: ai/providers (ProviderClient), hooks/interfaces (CardStorage),
ai/normalize, ai/retry, ai/usage, audit, schemas. No FastAPI imports.
"""

import asyncio
import base64
import binascii
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aitrumps.ai.normalize import NormalizationError, normalize_card_ideas, split_results
from aitrumps.ai.providers.base import ProviderClient, ProviderError
from aitrumps.ai.retry import RetryPolicy, is_transient, with_retry
from aitrumps.ai.usage import log_generation
from aitrumps.audit import audit
from aitrumps.hooks.interfaces import CardStorage, StorageError
from aitrumps.schemas import (
    CardIdea,
    GenerateRequest,
    ImageEnvelope,
    JsonEnvelope,
    PlayerIdentity,
)

logger = logging.getLogger("aitrumps.proxy")

# Anything shorter can't be a real JPEG; Imagen sometimes returns a stub.
MIN_IMAGE_BASE64_LENGTH = 1000

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProxyError(Exception):
    """Base for generation failures. Carries the HTTP mapping."""

    status_code = 500
    code = "GENERATION_ERROR"
    attempts = 0

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidGenerationRequest(ProxyError):
    status_code = 400
    code = "INVALID_REQUEST"


class ProviderParseError(ProxyError):
    """The text model replied with something that isn't JSON."""

    status_code = 500
    code = "PARSE_ERROR"

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class InvalidImageError(ProxyError):
    status_code = 502
    code = "INVALID_IMAGE"


class ProviderUnavailable(ProxyError):
    """Transient provider failures outlasted the retry budget."""

    status_code = 502
    code = "PROVIDER_UNAVAILABLE"


class ProviderRejected(ProxyError):
    """The provider refused the request (4xx-equivalent). Not retried."""

    status_code = 502
    code = "PROVIDER_REJECTED"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_fences(text: str) -> str:
    """Removes a leading ```json / ``` fence and a trailing ``` fence."""
    return _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", text, count=1), count=1).strip()


def parse_model_json(text: str) -> Any:
    """Parses a text-model reply as JSON after fence stripping.

    Raises:
        ProviderParseError: With the unmodified reply as raw.
    """
    try:
        return json.loads(strip_fences(text))
    except json.JSONDecodeError as exc:
        raise ProviderParseError(f"Model reply is not valid JSON: {exc.msg}", raw=text) from exc


def _check_image(data: str | None) -> bytes:
    """Validates base64 image data and returns the decoded bytes."""
    if not data or len(data) < MIN_IMAGE_BASE64_LENGTH:
        raise InvalidImageError("Generated image data is invalid")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Generated image data is invalid") from exc


# ---------------------------------------------------------------------------
# GenerationProxy
# ---------------------------------------------------------------------------


class GenerationProxy:
    """Forwards generation requests to the provider.

    Args:
        provider: Concrete ProviderClient (Gemini in production, Mock in tests).
        storage: Card storage for image persistence and audit lines.
        text_model: Provider model ID for text requests.
        image_model: Provider model ID for image requests.
        text_timeout: Seconds per text attempt.
        image_timeout: Seconds per image attempt.
        retry_policy: Backoff policy for transient failures.
        sleep: Awaitable sleep used between retries. Tests inject a no-op.
    """

    def __init__(
        self,
        provider: ProviderClient,
        storage: CardStorage,
        text_model: str,
        image_model: str,
        text_timeout: float = 10.0,
        image_timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._provider = provider
        self._storage = storage
        self._text_model = text_model
        self._image_model = image_model
        self._text_timeout = text_timeout
        self._image_timeout = image_timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    @property
    def provider(self) -> ProviderClient:
        return self._provider

    async def _call(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: str,
    ) -> tuple[Any, int]:
        """Runs a provider call under the retry policy.

        Returns:
            (result, attempts made).

        Raises:
            ProviderUnavailable: Transient failures exhausted the retries.
            ProviderRejected: A non-transient provider failure.
        """
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            return await operation()

        try:
            result = await with_retry(
                attempt, self._retry_policy, sleep=self._sleep, label=label
            )
        except (ProviderError, TimeoutError) as exc:
            error: ProxyError
            if is_transient(exc):
                error = ProviderUnavailable(f"{label} unavailable after {attempts} attempt(s)")
            else:
                error = ProviderRejected(f"{label} was rejected by the provider")
            error.attempts = attempts
            raise error from exc
        return result, attempts

    async def generate(
        self, request: GenerateRequest, identity: PlayerIdentity | None
    ) -> JsonEnvelope | ImageEnvelope:
        """Generates text or an image for one request.

        Args:
            request: The validated request body.
            identity: Caller, for logs and audit lines.

        Returns:
            JsonEnvelope for text, ImageEnvelope for images.

        Raises:
            InvalidGenerationRequest: Blank prompt or missing model kind.
            ProviderParseError: Text reply isn't JSON.
            InvalidImageError: Image reply missing or too short.
            ProviderUnavailable: Retries exhausted.
            ProviderRejected: Non-transient provider error.
        """
        if not request.prompt or not request.prompt.strip():
            raise InvalidGenerationRequest("Prompt is required")
        if request.model_kind is None:
            raise InvalidGenerationRequest("Model kind is required")

        if request.model_kind == "text":
            data = await self._generate_json(request.prompt, identity)
            return JsonEnvelope(data=data)
        return await self._generate_image(request, identity)

    async def _generate_json(self, prompt: str, identity: PlayerIdentity | None) -> Any:
        start = time.monotonic()
        outcome = "ok"
        attempts = 0
        try:
            text, attempts = await self._call(
                lambda: self._provider.generate_text(
                    prompt=prompt,
                    model_id=self._text_model,
                    timeout=self._text_timeout,
                ),
                "Text generation",
            )
            return parse_model_json(text)
        except ProxyError as exc:
            outcome = exc.code
            attempts = exc.attempts or attempts
            await self._audit_failure(exc, "text", identity)
            raise
        finally:
            log_generation(
                model_kind="text",
                model_id=self._text_model,
                prompt_length=len(prompt),
                duration_ms=(time.monotonic() - start) * 1000,
                outcome=outcome,
                player_code=identity.player_code if identity else None,
                attempts=attempts,
            )

    async def _generate_image(
        self, request: GenerateRequest, identity: PlayerIdentity | None
    ) -> ImageEnvelope:
        start = time.monotonic()
        outcome = "ok"
        attempts = 0
        try:
            data, attempts = await self._call(
                lambda: self._provider.generate_image(
                    prompt=request.prompt,
                    model_id=self._image_model,
                    timeout=self._image_timeout,
                ),
                "Image generation",
            )
            image_bytes = _check_image(data)
        except ProxyError as exc:
            outcome = exc.code
            attempts = exc.attempts or attempts
            await self._audit_failure(exc, "image", identity)
            raise
        finally:
            log_generation(
                model_kind="image",
                model_id=self._image_model,
                prompt_length=len(request.prompt or ""),
                duration_ms=(time.monotonic() - start) * 1000,
                outcome=outcome,
                player_code=identity.player_code if identity else None,
                card_id=request.card_id,
                attempts=attempts,
            )

        persistent_url = None
        if request.card_id and request.series:
            persistent_url = await self._persist_image(
                request.card_id, request.series, image_bytes, identity
            )
        return ImageEnvelope(data=data, persistent_url=persistent_url)

    async def _persist_image(
        self,
        card_id: str,
        series: str,
        image_bytes: bytes,
        identity: PlayerIdentity | None,
    ) -> str | None:
        try:
            return await self._storage.save_image(card_id, image_bytes, series)
        except StorageError as exc:
            logger.warning("Image persistence failed for card %s: %s", card_id, exc)
            await audit(
                self._storage,
                "error",
                "Image persistence failed",
                cardId=card_id,
                series=series,
                playerCode=identity.player_code if identity else None,
                error=str(exc),
            )
            return None

    async def _audit_failure(
        self, exc: ProxyError, model_kind: str, identity: PlayerIdentity | None
    ) -> None:
        await audit(
            self._storage,
            "error",
            "Generation failed",
            modelKind=model_kind,
            code=exc.code,
            playerCode=identity.player_code if identity else None,
        )

    async def generate_card_ideas(
        self, prompt: str, identity: PlayerIdentity | None
    ) -> tuple[list[CardIdea], list[NormalizationError]]:
        """Asks the text model for card concepts and normalises them.

        Returns:
            (accepted ideas, per-concept rejections).

        Raises:
            Same errors as generate() for the text path.
        """
        if not prompt or not prompt.strip():
            raise InvalidGenerationRequest("Prompt is required")
        raw = await self._generate_json(prompt, identity)
        ideas, rejected = split_results(normalize_card_ideas(raw))
        if rejected:
            logger.info(
                "Card ideas: %d accepted, %d rejected", len(ideas), len(rejected),
                extra={"accepted": len(ideas), "rejected": len(rejected)},
            )
        return ideas, rejected
