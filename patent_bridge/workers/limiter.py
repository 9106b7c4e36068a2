"""Throttling and retry around outbound register calls."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from patent_bridge.infrastructure.registry import RetryableStatusError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Caps concurrent calls and spaces out their start times."""

    def __init__(
        self,
        max_concurrent: int = 1,
        min_time_ms: int = 600,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.max_concurrent = max(1, max_concurrent)
        self.min_time = max(0, min_time_ms) / 1000
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._spacing = asyncio.Lock()
        self._next_start = 0.0
        self._clock = clock
        self._sleep = sleep

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            async with self._spacing:
                delay = self._next_start - self._clock()
                if delay > 0:
                    await self._sleep(delay)
                self._next_start = max(self._clock(), self._next_start) + self.min_time
            yield


@dataclass
class RetryPolicy:
    """Backoff rules for transient register statuses.

    429 is retried without limit after the server supplied ``retry-after``;
    other transient statuses back off exponentially until ``max_retries``
    attempts have been spent.  Both share one attempt counter.
    """

    max_retries: int = 5
    base_ms: float = 2000
    factor: float = 1.7
    cap_ms: float = 15000
    jitter_ms: float = 400
    throttle_jitter_ms: float = 300
    default_retry_after: float = 1.0

    def backoff(self, attempt: int, jitter: float = 0.0) -> float:
        """Seconds to wait after the 0-based ``attempt`` failed transiently."""

        delay = min(self.base_ms * self.factor**attempt, self.cap_ms)
        return (delay + jitter * self.jitter_ms) / 1000

    def throttle_delay(self, retry_after: float | None, jitter: float = 0.0) -> float:
        seconds = self.default_retry_after if retry_after is None else retry_after
        return seconds + (jitter * self.throttle_jitter_ms) / 1000

    def should_stop(self, error: BaseException | None, attempt: int) -> bool:
        if isinstance(error, RetryableStatusError) and error.throttled:
            return False
        return attempt >= self.max_retries


def _last_error(retry_state: RetryCallState) -> BaseException | None:
    outcome = retry_state.outcome
    if outcome is None or not outcome.failed:
        return None
    return outcome.exception()


class RateLimitedRetrier:
    """Runs register calls through one shared limiter with retries."""

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.limiter = limiter or RateLimiter()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _wait(self, retry_state: RetryCallState) -> float:
        error = _last_error(retry_state)
        attempt = retry_state.attempt_number - 1
        jitter = self._rng.random()
        if isinstance(error, RetryableStatusError) and error.throttled:
            return self.policy.throttle_delay(error.retry_after, jitter)
        return self.policy.backoff(attempt, jitter)

    def _stop(self, retry_state: RetryCallState) -> bool:
        return self.policy.should_stop(_last_error(retry_state), retry_state.attempt_number - 1)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        error = _last_error(retry_state)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if isinstance(error, RetryableStatusError) and error.throttled:
            logger.warning("429 received - backing off %.2fs (retry-after=%s)", delay, error.retry_after)
            return
        status = getattr(error, "status", None)
        logger.warning(
            "transient error %s - retrying (attempt %s) in %.2fs",
            status,
            retry_state.attempt_number,
            delay,
        )

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        async with self.limiter.slot():
            retrying = AsyncRetrying(
                retry=retry_if_exception_type(RetryableStatusError),
                wait=self._wait,
                stop=self._stop,
                sleep=self._sleep,
                before_sleep=self._log_retry,
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    result = await task()
            return result


__all__ = ["RateLimitedRetrier", "RateLimiter", "RetryPolicy"]
