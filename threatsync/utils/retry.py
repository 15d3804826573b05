"""Retry policy for downstream API calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from threatsync.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy applied to rate-limited requests."""

    max_attempts: int = 5
    base_delay: float = 1.0  # seconds before the second attempt
    multiplier: float = 2.0
    max_delay: float = 60.0
    retryable_statuses: frozenset[int] = field(default_factory=lambda: frozenset({429}))

    def is_retryable(self, exc: BaseException) -> bool:
        """Only rate limiting is retried; every other failure surfaces at once."""
        return (
            isinstance(exc, RateLimitedError)
            and exc.status_code in self.retryable_statuses
        )

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))


def _log_retry(retry_state: RetryCallState) -> None:
    from threatsync.metrics import DOWNSTREAM_RETRIES

    DOWNSTREAM_RETRIES.inc()
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Rate limited (attempt {retry_state.attempt_number}), "
        f"retrying in {delay:.1f}s: {exc}"
    )


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    **kwargs: Any,
) -> T:
    """
    Await ``func(*args, **kwargs)`` under the given retry policy.

    Args:
        policy: Attempt ceiling and backoff parameters.
        func: Coroutine function performing one request.
        sleep: Awaitable sleep used between attempts.

    Returns:
        The result of the first successful attempt.

    Raises:
        RateLimitedError: If every attempt was rate limited.
        Exception: Any non-retryable error raised by ``func``.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_exception(policy.is_retryable),
        before_sleep=_log_retry,
        sleep=sleep or asyncio.sleep,
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)

    raise RuntimeError("retry loop exited without a result")  # pragma: no cover
