"""Card record helpers — storage layout, path safety, and record predicates.

Both storage backends lay records out identically; these helpers are the
single definition of that layout, so the local and cloud implementations
can't drift apart:

    images/<series>/<YYYY-MM-DD>/<card_id>.jpg
    cards/<series>/<card_id>.json
    logs/<YYYY-MM-DD>/<level>.jsonl

Every caller-supplied segment goes through sanitize_segment() before it
becomes part of a key or a filesystem path.

Leaf module: stdlib only.
"""

import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

IMAGES_PREFIX = "images"
CARDS_PREFIX = "cards"
LOGS_PREFIX = "logs"

DEFAULT_SEGMENT = "default"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_SAFE_FILENAME = re.compile(r"^[A-Za-z0-9_-]+\.(jpg|jpeg|png)$")
_DATE_SEGMENT = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# A record is fully recreatable when every one of these is non-empty.
RECREATION_FIELDS: tuple[str, ...] = (
    "id",
    "title",
    "series",
    "stats",
    "rarity",
    "theme",
    "colorScheme",
    "imageStyle",
    "imagePrompt",
)


class InvalidStoragePath(ValueError):
    """A storage path escapes its expected prefix or is malformed."""


def sanitize_segment(value: str | None) -> str:
    """Reduces a caller-supplied value to one safe path segment.

    Anything outside [A-Za-z0-9_-] becomes "_", so "../../etc" turns into
    "______etc" and can never climb out of its parent directory.

    Args:
        value: Raw series name or card id. None or empty → "default".

    Returns:
        A non-empty segment containing only safe characters.
    """
    if not value:
        return DEFAULT_SEGMENT
    return _UNSAFE_CHARS.sub("_", value)


def today_stamp(now: datetime | None = None) -> str:
    """Returns the UTC date as YYYY-MM-DD."""
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def image_key(card_id: str, series: str | None, now: datetime | None = None) -> str:
    """Storage key for a card image."""
    return (
        f"{IMAGES_PREFIX}/{sanitize_segment(series)}/{today_stamp(now)}/"
        f"{sanitize_segment(card_id)}.jpg"
    )


def card_key(card_id: str, series: str | None) -> str:
    """Storage key for a card record."""
    return f"{CARDS_PREFIX}/{sanitize_segment(series)}/{sanitize_segment(card_id)}.json"


def log_key(level: str, now: datetime | None = None) -> str:
    """Storage key for the level- and date-partitioned log."""
    return f"{LOGS_PREFIX}/{today_stamp(now)}/{sanitize_segment(level)}.jsonl"


def validate_image_path(path: str) -> str:
    """Checks that a stored-image path stays under images/.

    Accepts exactly images/<series>/<YYYY-MM-DD>/<file>.(jpg|jpeg|png) with
    safe segments. Rejects absolute paths, "..", empty segments, and
    anything outside the images/ prefix.

    Args:
        path: The path as received from the caller.

    Returns:
        The path, unchanged, if valid.

    Raises:
        InvalidStoragePath: If the path is malformed or escapes images/.
    """
    if not path or "\\" in path or path.startswith("/"):
        raise InvalidStoragePath(f"Invalid image path: {path!r}")

    parts = PurePosixPath(path).parts
    if len(parts) != 4 or parts[0] != IMAGES_PREFIX:
        raise InvalidStoragePath(f"Invalid image path: {path!r}")

    _, series, date, filename = parts
    if sanitize_segment(series) != series:
        raise InvalidStoragePath(f"Invalid image path: {path!r}")
    if not _DATE_SEGMENT.match(date) or not _SAFE_FILENAME.match(filename):
        raise InvalidStoragePath(f"Invalid image path: {path!r}")
    return path


def stamp_record(record: dict[str, Any], storage_location: str) -> dict[str, Any]:
    """Returns a copy of a card record with savedAt and storageLocation set.

    storage_location is the key the record is stored under, so a listed
    record points back at its own object.
    """
    stamped = dict(record)
    stamped["savedAt"] = iso_now()
    stamped["storageLocation"] = storage_location
    return stamped


def sort_newest_first(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sorts card records by savedAt, newest first. Missing savedAt sorts last."""
    return sorted(records, key=lambda r: r.get("savedAt") or "", reverse=True)


def is_fully_recreatable(record: dict[str, Any]) -> bool:
    """Checks whether a stored record can be redisplayed without the AI.

    Args:
        record: A card record in wire (camelCase) form.

    Returns:
        True if every identity and generation-context field is non-empty.
    """
    for field in RECREATION_FIELDS:
        value = record.get(field)
        if value is None or value == "" or value == [] or value == {}:
            return False
    return True
