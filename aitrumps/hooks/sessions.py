"""In-memory session store — player profiles for the validate endpoint.

Python dict-backed storage for ephemeral player sessions. TTL is enforced
on read: get_session checks expires_at and lazily deletes expired entries.
No background sweeper; a store that loses data on restart doesn't need one.

Losing this store (restart, second replica) never logs anyone out: the
signed credential is the authorisation gate, and validate falls back to the
credential's own issue time when no profile exists.

Usage:
    from aitrumps.hooks.sessions import InMemorySessionStore

    sessions = InMemorySessionStore()
    await sessions.save_session(player_session)
    await sessions.get_session("TIGER34")  # None if expired
"""

from datetime import datetime, timezone

from aitrumps.hooks.interfaces import SessionStore
from aitrumps.schemas import PlayerSession


class InMemorySessionStore(SessionStore):
    """Dict-backed session storage, loses data on restart.

    Sessions are keyed by player code. Expired sessions are lazily
    deleted on read.
    """

    def __init__(self) -> None:
        """Initialises empty session store."""
        self._sessions: dict[str, PlayerSession] = {}

    async def get_session(self, player_code: str) -> PlayerSession | None:
        """Retrieves a session, returning None if expired or missing.

        Args:
            player_code: Normalised player code.

        Returns:
            The PlayerSession if it exists and hasn't expired, None otherwise.
        """
        session = self._sessions.get(player_code)
        if session is None:
            return None
        if session.expires_at <= datetime.now(timezone.utc):
            del self._sessions[player_code]
            return None
        return session

    async def save_session(self, session: PlayerSession) -> None:
        """Stores a session, keyed by player code. Creates or overwrites."""
        self._sessions[session.player_code] = session

    async def touch(self, player_code: str) -> PlayerSession | None:
        """Refreshes last_active on a live session."""
        session = await self.get_session(player_code)
        if session is None:
            return None
        session.last_active = datetime.now(timezone.utc)
        return session

    async def delete_session(self, player_code: str) -> None:
        """Deletes a session. No-op if not found (idempotent)."""
        self._sessions.pop(player_code, None)
