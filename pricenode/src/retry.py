"""Bounded retry with backoff for async operations.

``retry_async`` runs an operation up to ``max_attempts`` times, sleeping
``backoff(n)`` seconds after the n-th failed attempt, and returns a
:class:`RetryOutcome` instead of raising.

.. code-block:: python

    outcome = await retry_async(
        lambda: fetcher.get_price("BTC"),
        max_attempts=3,
        backoff=linear_backoff(1.0),
    )
    if outcome.ok:
        price = outcome.value
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

BackoffFn = Callable[[int], float]


def linear_backoff(base: float) -> BackoffFn:
    """Delay of ``base * attempt`` seconds after failed attempt number ``attempt``.

    .. code-block:: python

        >>> [linear_backoff(1.0)(n) for n in (1, 2, 3)]
        [1.0, 2.0, 3.0]
    """
    return lambda attempt: base * attempt


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation.

    :ivar value: Return value of the successful attempt, or None.
    :ivar error: Exception from the last failed attempt, or None on success.
    :ivar attempts: Number of attempts made.
    """

    value: T | None
    error: BaseException | None
    attempts: int

    @property
    def ok(self) -> bool:
        """Check if an attempt succeeded."""
        return self.error is None


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff: BackoffFn,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds or ``max_attempts`` are used.

    :param operation: Zero-argument callable returning a fresh awaitable per attempt.
    :param max_attempts: Maximum number of attempts (at least 1).
    :param backoff: Maps the failed attempt number (1-based) to a delay in seconds.
    :param retry_on: Exception types that count as a failed attempt.
    :param give_up_on: Exception types that end retrying immediately.
    :param sleep: Sleep coroutine (injectable for tests).
    :returns: RetryOutcome with the value or the last error.
    :raises ValueError: If max_attempts < 1.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return RetryOutcome(value=await operation(), error=None, attempts=attempt)
        except give_up_on as exc:
            return RetryOutcome(value=None, error=exc, attempts=attempt)
        except retry_on as exc:
            last_error = exc
            logger.debug("Attempt %d/%d failed: %s", attempt, max_attempts, exc)

        if attempt < max_attempts:
            await sleep(backoff(attempt))

    return RetryOutcome(value=None, error=last_error, attempts=max_attempts)
