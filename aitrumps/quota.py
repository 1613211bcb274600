"""Quota tracker — daily request cap with soft-threshold slowdown.

Per identity-key state machine over one fixed 24-hour window:

    fresh ──▶ within_soft_limit ──▶ over_soft_under_hard ──▶ blocked
      ▲                                                          │
      └──────────────── window elapsed (hard reset) ◀────────────┘

- count <= soft_limit: allowed, no delay.
- soft_limit < count <= hard_limit: allowed, delayed by
  (count - soft_limit) * delay_step, capped at max_delay.
- count > hard_limit: rejected until the window rolls over.

The window is a hard reset, not a leaky bucket: a burst straddling the
boundary can see up to 2 × hard_limit requests in a short span.

Counting and window expiry live in a QuotaStore; this module only
interprets counts. Every decision is logged on ``aitrumps.quota`` with
key, address, remaining count and reset time as ``extra`` fields.

Usage:
    from aitrumps.quota import QuotaPolicy, QuotaTracker

    tracker = QuotaTracker(LimitsQuotaStore(), QuotaPolicy())
    decision = await tracker.acquire("player:TIGER34", client_ip="10.0.0.1")
    # raises QuotaExceeded past the hard limit
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from aitrumps.hooks.interfaces import QuotaStore
from aitrumps.schemas import PlayerIdentity

logger = logging.getLogger("aitrumps.quota")

WINDOW = timedelta(hours=24)
WINDOW_LABEL = "24 hours"
RATE_LIMIT_ERROR = "Daily rate limit exceeded"


class QuotaState(str, Enum):
    FRESH = "fresh"
    WITHIN_SOFT_LIMIT = "within_soft_limit"
    OVER_SOFT_UNDER_HARD = "over_soft_under_hard"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class QuotaPolicy:
    """Thresholds for one quota.

    soft_limit requests per window run at full speed; up to hard_limit run
    with added delay; beyond that, requests are rejected.
    """

    soft_limit: int = 50
    hard_limit: int = 100
    window: timedelta = WINDOW
    delay_step: timedelta = timedelta(milliseconds=500)
    max_delay: timedelta = timedelta(seconds=10)

    def __post_init__(self) -> None:
        if self.soft_limit < 1 or self.hard_limit < 1:
            raise ValueError("Quota limits must be positive.")
        if self.soft_limit > self.hard_limit:
            raise ValueError("soft_limit must not exceed hard_limit.")

    def delay_for(self, count: int) -> float:
        """Seconds of added delay for the count-th request in a window."""
        over = count - self.soft_limit
        if over <= 0:
            return 0.0
        return min(over * self.delay_step, self.max_delay).total_seconds()

    def state_for(self, count: int) -> QuotaState:
        if count <= 0:
            return QuotaState.FRESH
        if count > self.hard_limit:
            return QuotaState.BLOCKED
        if count > self.soft_limit:
            return QuotaState.OVER_SOFT_UNDER_HARD
        return QuotaState.WITHIN_SOFT_LIMIT


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of one quota check.

    remaining counts requests still allowed in this window after this one.
    """

    key: str
    state: QuotaState
    count: int
    limit: int
    remaining: int
    reset_at: datetime
    delay_seconds: float

    @property
    def allowed(self) -> bool:
        return self.state is not QuotaState.BLOCKED

    def seconds_until_reset(self, now: datetime) -> int:
        return max(0, math.ceil((self.reset_at - now).total_seconds()))

    def headers(self, now: datetime) -> dict[str, str]:
        """RateLimit-* response headers for this decision."""
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.seconds_until_reset(now)),
        }


class QuotaExceeded(Exception):
    """A request was rejected by the hard ceiling."""

    def __init__(self, decision: QuotaDecision) -> None:
        super().__init__(RATE_LIMIT_ERROR)
        self.decision = decision


def quota_key(identity: PlayerIdentity | None, client_ip: str | None) -> str:
    """Identity-key for quota accounting.

    Authenticated callers are keyed by player code so a player can't dodge
    the cap by changing networks; everyone else by network address.
    """
    if identity is not None:
        return identity.quota_key
    return f"ip:{client_ip or 'unknown'}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaTracker:
    """Applies a QuotaPolicy to counts from a QuotaStore.

    Args:
        store: Atomic counter backend.
        policy: Thresholds and window.
        clock: Returns the current UTC time, used for Reset headers.
            Injected by tests.
        sleep: Awaitable sleep used for slowdown delays. Injected by tests.
    """

    def __init__(
        self,
        store: QuotaStore,
        policy: QuotaPolicy,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.policy = policy
        self._clock = clock
        self._sleep = sleep

    def now(self) -> datetime:
        return self._clock()

    async def check(self, key: str, client_ip: str | None = None) -> QuotaDecision:
        """Counts one request against key and decides whether it may run.

        Args:
            key: Identity-key from quota_key().
            client_ip: Caller address, for the decision log line only.

        Returns:
            The decision. Callers apply delay_seconds and reject when
            not decision.allowed.
        """
        record = await self.store.hit(key, self.policy.window)
        state = self.policy.state_for(record.count)
        decision = QuotaDecision(
            key=key,
            state=state,
            count=record.count,
            limit=self.policy.hard_limit,
            remaining=max(0, self.policy.hard_limit - record.count),
            reset_at=record.reset_at,
            delay_seconds=0.0 if state is QuotaState.BLOCKED else self.policy.delay_for(record.count),
        )

        fields = {
            "quota_key": key,
            "client_ip": client_ip,
            "quota_state": state.value,
            "count": decision.count,
            "remaining": decision.remaining,
            "reset_at": decision.reset_at.isoformat(),
            "delay_seconds": decision.delay_seconds,
        }
        if decision.allowed:
            logger.info(
                "Quota allow %s (%d/%d, remaining=%d, reset=%s)",
                key,
                decision.count,
                decision.limit,
                decision.remaining,
                decision.reset_at.isoformat(),
                extra=fields,
            )
        else:
            logger.warning(
                "Quota deny %s (%d/%d, reset=%s)",
                key,
                decision.count,
                decision.limit,
                decision.reset_at.isoformat(),
                extra=fields,
            )
        return decision

    async def apply_delay(self, decision: QuotaDecision) -> None:
        """Waits out the slowdown for an allowed decision."""
        if decision.allowed and decision.delay_seconds > 0:
            await self._sleep(decision.delay_seconds)

    async def acquire(self, key: str, client_ip: str | None = None) -> QuotaDecision:
        """Counts a request, waits out any slowdown, and admits it.

        Raises:
            QuotaExceeded: Past the hard ceiling. Carries the decision so
                the caller can report limit and reset time.
        """
        decision = await self.check(key, client_ip)
        if not decision.allowed:
            raise QuotaExceeded(decision)
        await self.apply_delay(decision)
        return decision

    async def state_of(self, key: str) -> QuotaState:
        """Current state for key without counting a request."""
        record = await self.store.peek(key)
        if record is None:
            return QuotaState.FRESH
        return self.policy.state_for(record.count)
