"""Google Gemini / Imagen provider using the google-genai SDK.

Implements the ProviderClient contract: JSON-mode text generation on a
Gemini model and single-image generation on an Imagen model. Each call is
bounded by asyncio.wait_for; SDK errors are mapped onto ProviderError with
the transient flag set for server-side failures. The SDK's own retries are
disabled so the retry layer is the only one.
"""

import asyncio
import base64
import logging

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from aitrumps.ai.providers.base import ProviderClient, ProviderError, ProviderTimeout

logger = logging.getLogger(__name__)

_IMAGE_ASPECT_RATIO = "3:4"
_IMAGE_MIME = "image/jpeg"


def _to_provider_error(exc: genai_errors.APIError) -> ProviderError:
    """Maps an SDK error onto ProviderError.

    ServerError (5xx) is transient. ClientError (4xx, including 429) is not:
    retrying the same request won't change the answer inside our backoff.
    """
    code = getattr(exc, "code", None)
    transient = isinstance(exc, genai_errors.ServerError)
    return ProviderError(
        f"Gemini API error {code}: {getattr(exc, 'message', None) or exc}",
        transient=transient,
        status_code=code,
    )


def _extract_text(response: types.GenerateContentResponse) -> str:
    """Joins the text of all non-thinking parts of all candidates."""
    parts_text = []
    for candidate in response.candidates or []:
        if candidate.content is None or candidate.content.parts is None:
            continue
        for part in candidate.content.parts:
            if getattr(part, "thought", False):
                continue
            if part.text is not None:
                parts_text.append(part.text)
    return "".join(parts_text)


class GeminiProvider(ProviderClient):
    """Gemini text + Imagen image provider.

    Args:
        api_key: Google API key.
    """

    def __init__(self, api_key: str) -> None:
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(
                retry_options=types.HttpRetryOptions(attempts=1),
            ),
        )

    async def generate_text(self, *, prompt: str, model_id: str, timeout: float) -> str:
        """Returns the raw reply text of a JSON-mode content generation call."""
        config = types.GenerateContentConfig(response_mime_type="application/json")
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=model_id,
                    contents=prompt,
                    config=config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(f"Text generation timed out after {timeout:.0f}s") from exc
        except genai_errors.APIError as exc:
            raise _to_provider_error(exc) from exc

        if not response.candidates:
            raise ProviderError("No candidates in Gemini response.")
        return _extract_text(response)

    async def generate_image(
        self, *, prompt: str, model_id: str, timeout: float
    ) -> str | None:
        """Returns one base64 JPEG, or None when Imagen returned no image."""
        config = types.GenerateImagesConfig(
            number_of_images=1,
            output_mime_type=_IMAGE_MIME,
            aspect_ratio=_IMAGE_ASPECT_RATIO,
        )
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_images(
                    model=model_id,
                    prompt=prompt,
                    config=config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(f"Image generation timed out after {timeout:.0f}s") from exc
        except genai_errors.APIError as exc:
            raise _to_provider_error(exc) from exc

        if not response.generated_images:
            logger.warning("Imagen returned no images (likely filtered).")
            return None
        image = response.generated_images[0].image
        if image is None or not image.image_bytes:
            return None
        return base64.b64encode(image.image_bytes).decode("ascii")

    async def close(self) -> None:
        await self._client.aio.aclose()
