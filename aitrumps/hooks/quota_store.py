"""Quota store backed by the ``limits`` counter storage.

Each identity-key is a fixed-window counter: the first hit sets the
expiry, later hits only increment, and the key drops out of the backend
once the window has elapsed. The in-process memory backend evicts
expired keys on its own, so idle identities do not accumulate.

The backend is chosen by URI. ``async+memory://`` keeps counters in this
process; ``async+redis://host:6379`` shares them across replicas.

Usage:
    from aitrumps.hooks.quota_store import LimitsQuotaStore

    store = LimitsQuotaStore("async+memory://")
    record = await store.hit("player:TIGER34", timedelta(hours=24))
"""

from datetime import datetime, timedelta, timezone

from limits.storage import storage_from_string

from aitrumps.hooks.interfaces import QuotaStore
from aitrumps.schemas import QuotaRecord

DEFAULT_STORAGE_URI = "async+memory://"


def _window_seconds(window: timedelta) -> int:
    return max(1, int(window.total_seconds()))


class LimitsQuotaStore(QuotaStore):
    """Fixed-window counters in a ``limits`` async storage backend.

    Args:
        uri: A ``limits`` storage URI. Must name an async backend.
    """

    def __init__(self, uri: str = DEFAULT_STORAGE_URI) -> None:
        if not uri.startswith("async+"):
            raise ValueError(f"Quota storage must be an async backend, got {uri!r}.")
        self.uri = uri
        self.backend = storage_from_string(uri)

    async def _reset_at(self, key: str) -> datetime:
        expiry = await self.backend.get_expiry(key)
        return datetime.fromtimestamp(expiry, timezone.utc)

    async def hit(self, key: str, window: timedelta) -> QuotaRecord:
        count = await self.backend.incr(key, _window_seconds(window))
        return QuotaRecord(key=key, count=count, reset_at=await self._reset_at(key))

    async def peek(self, key: str) -> QuotaRecord | None:
        count = await self.backend.get(key)
        if count <= 0:
            return None
        return QuotaRecord(key=key, count=count, reset_at=await self._reset_at(key))
