"""Audit trail: security and failure events appended to card storage.

Audit lines go to the storage backend's save_log (logs/<date>/<level>.jsonl)
in addition to the normal logger. Writing the audit line is best-effort: a
storage failure here is logged and swallowed, because the request that
triggered the event must not fail on account of its own audit record.

Usage:
    from aitrumps.audit import audit

    await audit(storage, "warn", "Login failed", playerCode=code, ip=ip)
"""

import logging
from typing import Any

from aitrumps.hooks.interfaces import CardStorage, StorageError

logger = logging.getLogger("aitrumps.audit")


async def audit(storage: CardStorage, level: str, message: str, **metadata: Any) -> None:
    """Appends one audit entry. Never raises on storage failure."""
    try:
        await storage.save_log(level, message, metadata)
    except StorageError as exc:
        logger.warning("Audit write failed (%s): %s", message, exc)
