"""Tests for civictrack.core.retry — bounded exponential backoff."""

from __future__ import annotations

import pytest

from civictrack.core.errors import ReportNotFound
from civictrack.core.retry import RetryCoordinator, RetryPolicy, with_retry


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class _Flaky:
    """Fails *failures* times with *error*, then returns *value*."""

    def __init__(self, failures: int, error: Exception, value: str = "ok") -> None:
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


# ── RetryPolicy ─────────────────────────────────────────────
class TestPolicy:
    def test_delay_doubles(self) -> None:
        p = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000)
        assert [p.delay_ms(n) for n in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]

    def test_delay_capped(self) -> None:
        p = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000)
        assert p.delay_ms(5) == 10000
        assert p.delay_ms(12) == 10000

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


# ── RetryCoordinator ───────────────────────────────────────
@pytest.mark.asyncio
async def test_non_retryable_attempts_once() -> None:
    sleeps = _Sleeps()
    op = _Flaky(failures=99, error=ReportNotFound("r-1"))
    coordinator = RetryCoordinator(RetryPolicy(max_attempts=3), sleep=sleeps)

    with pytest.raises(ReportNotFound):
        await coordinator.execute(op)

    assert op.calls == 1
    assert sleeps.calls == []
    assert coordinator.attempts == 0


@pytest.mark.asyncio
async def test_fails_twice_then_succeeds() -> None:
    sleeps = _Sleeps()
    op = _Flaky(failures=2, error=ConnectionError("network down"), value="done")
    coordinator = RetryCoordinator(RetryPolicy(max_attempts=3, base_delay_ms=1000), sleep=sleeps)

    assert await coordinator.execute(op) == "done"
    assert op.calls == 3
    assert sleeps.calls == [1.0, 2.0]
    assert coordinator.attempts == 0


@pytest.mark.asyncio
async def test_gives_up_with_original_error() -> None:
    sleeps = _Sleeps()
    original = TimeoutError("upstream timed out")
    op = _Flaky(failures=99, error=original)
    coordinator = RetryCoordinator(RetryPolicy(max_attempts=3), sleep=sleeps)

    with pytest.raises(TimeoutError) as excinfo:
        await coordinator.execute(op)

    assert excinfo.value is original
    assert op.calls == 3
    assert len(sleeps.calls) == 2
    assert coordinator.attempts == 0


@pytest.mark.asyncio
async def test_delays_respect_cap() -> None:
    sleeps = _Sleeps()
    op = _Flaky(failures=99, error=ConnectionError("network"))
    policy = RetryPolicy(max_attempts=5, base_delay_ms=1000, max_delay_ms=3000)

    with pytest.raises(ConnectionError):
        await RetryCoordinator(policy, sleep=sleeps).execute(op)

    assert sleeps.calls == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_coordinator_reusable_after_failure() -> None:
    sleeps = _Sleeps()
    coordinator = RetryCoordinator(RetryPolicy(max_attempts=2), sleep=sleeps)

    with pytest.raises(ConnectionError):
        await coordinator.execute(_Flaky(failures=99, error=ConnectionError("network")))

    op = _Flaky(failures=1, error=ConnectionError("network"))
    assert await coordinator.execute(op) == "ok"
    assert op.calls == 2


def test_reset() -> None:
    coordinator = RetryCoordinator()
    coordinator._attempts = 2
    coordinator.reset()
    assert coordinator.attempts == 0


@pytest.mark.asyncio
async def test_with_retry() -> None:
    sleeps = _Sleeps()
    op = _Flaky(failures=1, error=ConnectionError("network"), value="v")
    assert await with_retry(op, RetryPolicy(base_delay_ms=5), sleep=sleeps) == "v"
    assert sleeps.calls == [0.005]
