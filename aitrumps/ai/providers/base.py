"""Base provider client interface and provider error types.

Defines the contract every generative-AI provider implementation (Gemini,
Mock) must satisfy: one text call returning raw model text, one image call
returning base64 JPEG data, and an explicit close() for teardown.

Providers translate their SDK's failures into ProviderError with a
``transient`` flag. The retry layer reads that flag; providers never retry
on their own.

Leaf module: imports only stdlib.
"""

from abc import ABC, abstractmethod


# ---------------------------------------------------------------------------
# Errors: the contract between providers and the retry layer
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """A provider call failed.

    Attributes:
        transient: True for 5xx-equivalent and connection failures, which
            are worth retrying. False for 4xx-equivalent failures.
        status_code: Upstream status code, if the SDK reported one.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """A provider call exceeded its timeout. Always transient."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=True)


# ---------------------------------------------------------------------------
# ProviderClient ABC: the interface every provider implements
# ---------------------------------------------------------------------------


class ProviderClient(ABC):
    """Abstract base for generative-AI providers.

    Constructed once at startup and injected into the generation proxy.
    close() is called on application shutdown.
    """

    @abstractmethod
    async def generate_text(self, *, prompt: str, model_id: str, timeout: float) -> str:
        """Asks the text model for a JSON-formatted reply.

        Args:
            prompt: The full prompt.
            model_id: Provider model ID.
            timeout: Seconds before the call is abandoned.

        Returns:
            The model's raw reply text (may still carry markdown fences).

        Raises:
            ProviderTimeout: On timeout.
            ProviderError: On any other upstream failure.
        """

    @abstractmethod
    async def generate_image(
        self, *, prompt: str, model_id: str, timeout: float
    ) -> str | None:
        """Asks the image model for exactly one JPEG.

        Returns:
            Base64-encoded image bytes, or None if the provider returned
            no image (e.g. safety filtering).

        Raises:
            ProviderTimeout: On timeout.
            ProviderError: On any other upstream failure.
        """

    async def close(self) -> None:
        """Releases SDK resources. Default: nothing to release."""
        return None
