from __future__ import annotations

import asyncio
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from patent_bridge.infrastructure.registry import RegistryLookupError, RetryableStatusError
from patent_bridge.workers.limiter import RateLimitedRetrier, RateLimiter, RetryPolicy


class FixedRandom:
    def __init__(self, value: float = 0.5) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedTask:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, errors: list[Exception], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _retrier(sleep: RecordingSleep, *, jitter: float = 0.5, max_retries: int = 5) -> RateLimitedRetrier:
    return RateLimitedRetrier(
        RateLimiter(max_concurrent=1, min_time_ms=0, sleep=sleep),
        RetryPolicy(max_retries=max_retries),
        sleep=sleep,
        rng=FixedRandom(jitter),
    )


def test_transient_error_is_retried_with_backoff():
    sleep = RecordingSleep()
    task = ScriptedTask([RetryableStatusError(503, "busy")])

    result = asyncio.run(_retrier(sleep).schedule(task))

    assert result == "ok"
    assert task.calls == 2
    assert len(sleep.delays) == 1
    assert 2.0 <= sleep.delays[0] < 2.4
    assert sleep.delays[0] == pytest.approx(2.2)


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy()

    assert policy.backoff(0) == pytest.approx(2.0)
    assert policy.backoff(1) == pytest.approx(3.4)
    assert policy.backoff(2) == pytest.approx(5.78)
    assert policy.backoff(10) == pytest.approx(15.0)
    assert policy.backoff(10, jitter=0.999) < 15.4


def test_throttling_honours_retry_after():
    sleep = RecordingSleep()
    task = ScriptedTask([RetryableStatusError(429, "slow down", retry_after=3.0)])

    asyncio.run(_retrier(sleep, jitter=0.0).schedule(task))

    assert task.calls == 2
    assert sleep.delays == [pytest.approx(3.0)]


def test_throttling_is_not_capped_by_max_retries():
    sleep = RecordingSleep()
    task = ScriptedTask([RetryableStatusError(429, "", retry_after=None) for _ in range(8)])

    asyncio.run(_retrier(sleep, jitter=0.0, max_retries=2).schedule(task))

    assert task.calls == 9
    assert sleep.delays == [pytest.approx(1.0)] * 8


def test_exhausted_retries_raise_last_error():
    sleep = RecordingSleep()
    task = ScriptedTask([RetryableStatusError(502, f"gateway {n}") for n in range(10)])

    with pytest.raises(RetryableStatusError) as excinfo:
        asyncio.run(_retrier(sleep, jitter=0.0, max_retries=3).schedule(task))

    assert excinfo.value.status == 502
    assert excinfo.value.body == "gateway 3"
    assert task.calls == 4
    assert sleep.delays == [pytest.approx(2.0), pytest.approx(3.4), pytest.approx(5.78)]


def test_non_retryable_error_propagates_immediately():
    sleep = RecordingSleep()
    task = ScriptedTask([RegistryLookupError("IPI API error 404: missing", status=404)])

    with pytest.raises(RegistryLookupError, match="404"):
        asyncio.run(_retrier(sleep).schedule(task))

    assert task.calls == 1
    assert sleep.delays == []


def test_limiter_spaces_out_starts():
    class FakeClock:
        now = 0.0

        def __call__(self) -> float:
            return self.now

    clock = FakeClock()
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)
        clock.now += delay

    limiter = RateLimiter(max_concurrent=1, min_time_ms=600, clock=clock, sleep=fake_sleep)
    starts: list[float] = []

    async def scenario() -> None:
        async def run() -> None:
            async with limiter.slot():
                starts.append(clock.now)

        await asyncio.gather(run(), run(), run())

    asyncio.run(scenario())

    assert starts == [pytest.approx(0.0), pytest.approx(0.6), pytest.approx(1.2)]
    assert delays == [pytest.approx(0.6), pytest.approx(0.6)]
