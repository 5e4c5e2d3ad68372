"""
Retry with backoff.

One helper for every retried call in the package: AI decider requests and
browser actions with ambiguous selectors both go through ``retry_async``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry.

    Attempt ``n`` (0-based) that fails is followed by a sleep of
    ``base_delay_s * backoff ** n`` seconds, provided ``retryable(error)`` is
    true and attempts remain.
    """

    max_attempts: int = 3
    base_delay_s: float = 1.0
    backoff: float = 2.0
    retryable: Callable[[BaseException], bool] = _always

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_s * (self.backoff ** attempt)


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried call: a value or the last error, never both."""

    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


async def retry_async(
    fn: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Optional[Callable[[int, BaseException], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryOutcome:
    """
    Call ``fn(attempt)`` until it succeeds or the policy gives up.

    ``on_retry(attempt, error)`` runs before each retry and may adjust what
    the next attempt does. Cancellation is never retried.
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(policy.max_attempts):
        try:
            value = await fn(attempt)
            return RetryOutcome(value=value, attempts=attempt + 1)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            if attempt + 1 >= policy.max_attempts or not policy.retryable(e):
                return RetryOutcome(error=e, attempts=attempt + 1)
            logger.debug("Attempt %d failed (%s), retrying", attempt + 1, e)
            if on_retry is not None:
                on_retry(attempt, e)
            delay = policy.delay_for(attempt)
            if delay > 0:
                await sleep(delay)

    return RetryOutcome(error=last_error, attempts=policy.max_attempts)
