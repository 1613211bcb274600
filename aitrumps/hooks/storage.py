"""Local file storage: development backend for CardStorage.

Writes images, card records and audit logs under a base directory using
the key layout from aitrumps.cards. Returned locators are URL paths under
/dev-storage/, which main.py serves for the images/ subtree only.

Blocking filesystem calls run in a worker thread so a slow disk never
stalls the event loop.

Usage:
    from aitrumps.hooks.storage import LocalCardStorage

    storage = LocalCardStorage()                          # ./dev-storage
    storage = LocalCardStorage(base_path="/tmp/cards")    # custom path
    url = await storage.save_image("card-1", jpeg_bytes, "Dinosaurs")
"""

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from aitrumps.cards import (
    CARDS_PREFIX,
    IMAGES_PREFIX,
    LOGS_PREFIX,
    InvalidStoragePath,
    card_key,
    image_key,
    iso_now,
    log_key,
    sanitize_segment,
    sort_newest_first,
    stamp_record,
    validate_image_path,
)
from aitrumps.hooks.interfaces import CardStorage, ImageNotFound, StorageError

logger = logging.getLogger("aitrumps.storage")

DEV_URL_PREFIX = "/dev-storage"


class LocalCardStorage(CardStorage):
    """Card storage on the local filesystem.

    Files live at {base_path}/{key}. Log lines are appended under a lock,
    so concurrent save_log calls never interleave partial lines.
    """

    backend_name = "local"

    def __init__(self, base_path: str | Path = "dev-storage") -> None:
        self._base_path = Path(base_path)
        self._log_lock = threading.Lock()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path(self, key: str) -> Path:
        root = self._base_path.resolve()
        target = (root / key).resolve()
        if not target.is_relative_to(root):
            raise InvalidStoragePath(f"Path escapes storage root: {key!r}")
        return target

    @staticmethod
    def _url(key: str) -> str:
        return f"{DEV_URL_PREFIX}/{key}"

    # -- writes ---------------------------------------------------------

    def _write_bytes(self, key: str, data: bytes) -> None:
        target = self._path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    async def save_image(self, card_id: str, data: bytes, series: str | None) -> str:
        key = image_key(card_id, series)
        await asyncio.to_thread(self._write_bytes, key, data)
        logger.info("Saved image %s (%d bytes)", key, len(data))
        return self._url(key)

    async def save_card(self, card_id: str, record: dict[str, Any]) -> str:
        key = card_key(card_id, record.get("series"))
        stamped = stamp_record(record, key)
        payload = json.dumps(stamped, indent=2).encode("utf-8")
        await asyncio.to_thread(self._write_bytes, key, payload)
        logger.info("Saved card %s", key)
        return key

    def _append_line(self, key: str, line: str) -> None:
        target = self._path(key)
        with self._log_lock:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with target.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            except OSError as exc:
                raise StorageError(f"Failed to append to {key}: {exc}") from exc

    async def save_log(
        self, level: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        entry = {"timestamp": iso_now(), "level": level, "message": message, **(metadata or {})}
        await asyncio.to_thread(self._append_line, log_key(level), json.dumps(entry))

    # -- reads ----------------------------------------------------------

    def _read_cards(self, series: str | None) -> list[dict[str, Any]]:
        root = self._base_path / CARDS_PREFIX
        if series is not None:
            root = root / sanitize_segment(series)
        if not root.is_dir():
            return []

        records = []
        for path in root.rglob("*.json"):
            try:
                records.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable card record %s: %s", path, exc)
        return records

    async def list_cards(self, series: str | None = None) -> list[dict[str, Any]]:
        records = await asyncio.to_thread(self._read_cards, series)
        return sort_newest_first(records)

    async def get_image_signed_url(self, path: str) -> str:
        validate_image_path(path)
        exists = await asyncio.to_thread(self._path(path).is_file)
        if not exists:
            raise ImageNotFound(f"No image at {path}")
        # Local files need no signing; the dev route serves them directly.
        return self._url(path)

    def _count_files(self) -> dict[str, int]:
        counts = {IMAGES_PREFIX: 0, CARDS_PREFIX: 0, LOGS_PREFIX: 0}
        for prefix in counts:
            root = self._base_path / prefix
            if root.is_dir():
                counts[prefix] = sum(1 for p in root.rglob("*") if p.is_file())
        return counts

    async def get_storage_stats(self) -> dict[str, Any]:
        counts = await asyncio.to_thread(self._count_files)
        return {
            "totalFiles": sum(counts.values()),
            "images": counts[IMAGES_PREFIX],
            "cards": counts[CARDS_PREFIX],
            "logs": counts[LOGS_PREFIX],
            "backend": self.backend_name,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
