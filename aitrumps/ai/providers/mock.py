"""Mock provider for testing and development.

Deterministic, zero-cost ProviderClient that returns configurable canned
text and image payloads. Used by:
- Every proxy and endpoint test (via conftest.mock_provider fixture)
- Development mode for contributors without an API key
- Reference implementation of the ProviderClient contract
"""

import base64

from aitrumps.ai.providers.base import ProviderClient

_DEFAULT_TEXT = '["Strength", "Speed", "Intelligence"]'
# Large enough to pass the proxy's minimum image size check.
_DEFAULT_IMAGE = base64.b64encode(b"\xff\xd8\xff\xe0" + b"\x00" * 2048).decode("ascii")


class MockProvider(ProviderClient):
    """Deterministic provider for testing.

    Args:
        text: Reply for generate_text().
        image: Base64 reply for generate_image(). None simulates a filtered
            (empty) image response.
        errors: Exceptions raised, one per call, before succeeding. Lets
            tests script "fail twice, then succeed".
        error: If set, every call raises this.
    """

    def __init__(
        self,
        text: str = _DEFAULT_TEXT,
        image: str | None = _DEFAULT_IMAGE,
        errors: list[Exception] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.text = text
        self.image = image
        self.errors = list(errors or [])
        self.error = error
        self.calls: list[dict] = []
        self.closed = False

    def _maybe_raise(self) -> None:
        if self.error is not None:
            raise self.error
        if self.errors:
            raise self.errors.pop(0)

    async def generate_text(self, *, prompt: str, model_id: str, timeout: float) -> str:
        self.calls.append({"kind": "text", "model_id": model_id, "timeout": timeout})
        self._maybe_raise()
        return self.text

    async def generate_image(
        self, *, prompt: str, model_id: str, timeout: float
    ) -> str | None:
        self.calls.append({"kind": "image", "model_id": model_id, "timeout": timeout})
        self._maybe_raise()
        return self.image

    async def close(self) -> None:
        self.closed = True
