"""Model ID registry — single source of truth for AI model identifiers.

Every provider call resolves its model ID through this module. The rest of
the codebase imports family-name constants from here; no raw model ID
strings anywhere else.

Two layers:
  Layer 1: A request declares a model kind ("text" or "image")
  Layer 2: Settings resolve each kind to a model ID via MODEL_MAP

To swap a model: set TEXT_MODEL / IMAGE_MODEL in the environment, or change
a constant below when the provider releases a new version.
"""

from typing import Literal

# ---------------------------------------------------------------------------
# Model IDs (update when providers release new versions)
# ---------------------------------------------------------------------------

# --- Gemini text models ---
GEMINI_FLASH_LITE: str = "gemini-2.5-flash-lite"
GEMINI_FLASH: str = "gemini-2.5-flash"
GEMINI_PRO: str = "gemini-2.5-pro"

# --- Imagen image models ---
IMAGEN_3: str = "imagen-3.0-generate-002"
IMAGEN_4: str = "imagen-4.0-generate-001"


ModelKind = Literal["text", "image"]

MODEL_KINDS: tuple[str, ...] = ("text", "image")


# ---------------------------------------------------------------------------
# Lookup map: env var value → actual model ID
# ---------------------------------------------------------------------------
# Keys match the constant names exactly (case-sensitive).
MODEL_MAP: dict[str, str] = {
    "GEMINI_FLASH_LITE": GEMINI_FLASH_LITE,
    "GEMINI_FLASH": GEMINI_FLASH,
    "GEMINI_PRO": GEMINI_PRO,
    "IMAGEN_3": IMAGEN_3,
    "IMAGEN_4": IMAGEN_4,
}

# Which family names are legal for which kind.
KIND_FAMILIES: dict[str, frozenset[str]] = {
    "text": frozenset({"GEMINI_FLASH_LITE", "GEMINI_FLASH", "GEMINI_PRO"}),
    "image": frozenset({"IMAGEN_3", "IMAGEN_4"}),
}


def kind_from_model_name(model_name: str) -> ModelKind:
    """Maps a raw provider model name to a model kind.

    Older clients send the provider model name instead of a kind. Anything
    naming an Imagen model is an image request; everything else is text.

    Args:
        model_name: The raw model name, e.g. "imagen-3.0-generate-002".

    Returns:
        "image" or "text".
    """
    if "imagen" in model_name.lower():
        return "image"
    return "text"
