"""Card idea normalisation: turns loosely shaped model output into CardIdeas.

Text models don't hold a schema perfectly: the same prompt yields
``title`` one day and ``card_title`` the next, a bare array or an object
wrapping it. This module accepts a fixed, ordered list of synonyms per
field and nothing else. Each concept yields either a CardIdea or a
NormalizationError; nothing is defaulted silently.

Priority is the tuple order below: the first synonym present with a
non-empty value wins, later ones are ignored (logged at debug).

Containers, tried in order:
  1. a JSON array of concepts
  2. an object with "card_concept" (object or array)
  3. an object with a "cards" array
  4. a single concept object (has a title synonym)

Each concept is unwrapped once from a "card_concept" or "card" wrapper.
Stats may be {"Speed": 80} or [{"name": "Speed", "value": 80}]; values must
be numbers or numeric strings.

Consumers dispatch with isinstance():

    for result in normalize_card_ideas(raw):
        if isinstance(result, NormalizationError): ...
"""

import logging
from dataclasses import dataclass
from typing import Any

from aitrumps.schemas import CardIdea, Statistic

logger = logging.getLogger(__name__)

TITLE_KEYS: tuple[str, ...] = ("title", "card_title", "name")
STATS_KEYS: tuple[str, ...] = ("stats", "statistics")
IMAGE_PROMPT_KEYS: tuple[str, ...] = ("imagePrompt", "image_prompt", "ai_image_prompt")

_WRAPPER_KEYS: tuple[str, ...] = ("card_concept", "card")


@dataclass(frozen=True)
class NormalizationError:
    """One concept that couldn't be turned into a CardIdea."""

    index: int
    reason: str

    def to_wire(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


NormalizedIdea = CardIdea | NormalizationError


def _first_present(concept: dict[str, Any], keys: tuple[str, ...]) -> tuple[str | None, Any]:
    """Returns (key, value) for the first synonym with a non-empty value."""
    found: tuple[str | None, Any] = (None, None)
    for key in keys:
        value = concept.get(key)
        if value is None or value == "":
            continue
        if found[0] is None:
            found = (key, value)
        else:
            logger.debug("Ignoring %r: %r takes priority", key, found[0])
    return found


def _unwrap(concept: Any) -> Any:
    if isinstance(concept, dict):
        for key in _WRAPPER_KEYS:
            inner = concept.get(key)
            if isinstance(inner, dict):
                return inner
    return concept


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    return None


def _parse_stats(raw: Any) -> list[Statistic] | str:
    """Returns the stats list, or a reason string on failure."""
    if isinstance(raw, dict):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        pairs = []
        for item in raw:
            if not isinstance(item, dict) or "name" not in item or "value" not in item:
                return "stats list entries need 'name' and 'value'"
            pairs.append((item["name"], item["value"]))
    else:
        return "stats must be an object or a list"

    stats = []
    for name, value in pairs:
        if not isinstance(name, str) or not name.strip():
            return "stat names must be non-empty strings"
        number = _as_number(value)
        if number is None:
            return f"stat {name!r} has non-numeric value {value!r}"
        stats.append(Statistic(name=name.strip(), value=number))
    if not stats:
        return "no stats"
    return stats


def normalize_card_idea(concept: Any, index: int = 0) -> NormalizedIdea:
    """Normalises one concept.

    Args:
        concept: One element of the model's output.
        index: Position in the output, reported on error.

    Returns:
        A CardIdea, or a NormalizationError naming the first problem.
    """
    concept = _unwrap(concept)
    if not isinstance(concept, dict):
        return NormalizationError(index, "concept is not an object")

    _, title = _first_present(concept, TITLE_KEYS)
    if not isinstance(title, str) or not title.strip():
        return NormalizationError(index, "missing title")

    _, image_prompt = _first_present(concept, IMAGE_PROMPT_KEYS)
    if not isinstance(image_prompt, str) or not image_prompt.strip():
        return NormalizationError(index, "missing image prompt")

    stats_key, raw_stats = _first_present(concept, STATS_KEYS)
    if stats_key is None:
        return NormalizationError(index, "missing stats")
    stats = _parse_stats(raw_stats)
    if isinstance(stats, str):
        return NormalizationError(index, stats)

    return CardIdea(title=title.strip(), stats=stats, image_prompt=image_prompt.strip())


def _concepts(raw: Any) -> list[Any]:
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        wrapped = raw.get("card_concept")
        if isinstance(wrapped, list):
            return wrapped
        if isinstance(wrapped, dict):
            return [wrapped]
        cards = raw.get("cards")
        if isinstance(cards, list):
            return cards
        return [raw]
    return [raw]


def normalize_card_ideas(raw: Any) -> list[NormalizedIdea]:
    """Normalises a whole model reply, one result per concept found."""
    return [normalize_card_idea(concept, index) for index, concept in enumerate(_concepts(raw))]


def split_results(
    results: list[NormalizedIdea],
) -> tuple[list[CardIdea], list[NormalizationError]]:
    """Partitions results into accepted ideas and rejections."""
    ideas = [r for r in results if isinstance(r, CardIdea)]
    errors = [r for r in results if isinstance(r, NormalizationError)]
    return ideas, errors
