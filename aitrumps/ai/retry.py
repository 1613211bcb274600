"""Retry policy and a generic retry wrapper.

The policy is a pure function of (attempt, error): it never sleeps and
never calls anything, so it is trivially testable. with_retry() consumes a
policy and runs any async operation under it. Provider calls and card
saves share this one abstraction instead of each carrying backoff math.

Transient means: a timeout, or an exception whose ``transient`` attribute
is true (ProviderError and StorageError both carry one). Everything else
propagates on the first failure.

Usage:
    from aitrumps.ai.retry import RetryPolicy, with_retry

    result = await with_retry(lambda: provider.generate_text(...),
                              RetryPolicy(), label="text generation")
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger("aitrumps.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


def is_transient(error: BaseException) -> bool:
    """True for timeouts and for errors flagged transient by their raiser."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    return bool(getattr(error, "transient", False))


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff: attempt N failing waits N × base_delay before N+1.

    Attributes:
        max_attempts: Total attempts including the first (3 → two retries).
        base_delay: Seconds; multiplied by the attempt number.
    """

    max_attempts: int = 3
    base_delay: float = 1.0

    def decide(self, attempt: int, error: BaseException) -> RetryDecision:
        """Decides whether attempt (1-based) should be followed by another.

        Args:
            attempt: The attempt that just failed, starting at 1.
            error: What it failed with.

        Returns:
            RetryDecision(retry, delay seconds before the next attempt).
        """
        if attempt >= self.max_attempts or not is_transient(error):
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=attempt * self.base_delay)


NO_RETRY = RetryPolicy(max_attempts=1)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Runs operation until it succeeds or the policy says stop.

    Args:
        operation: Zero-argument factory for a fresh awaitable per attempt.
        policy: Decides retry/delay after each failure.
        sleep: Awaitable sleep, injected by tests.
        label: Name used in retry log lines.

    Returns:
        The operation's result.

    Raises:
        The last error, once the policy declines to retry.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            decision = policy.decide(attempt, exc)
            if not decision.retry:
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label,
                attempt,
                policy.max_attempts,
                type(exc).__name__,
                decision.delay,
            )
            await sleep(decision.delay)
            attempt += 1
