"""Bounded exponential-backoff retry, driven by the error classifier.

A :class:`RetryCoordinator` keeps an attempt counter, so one instance
must never be shared between concurrently running operations.  Use
:func:`with_retry`, which builds a fresh coordinator per call, whenever
in doubt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from civictrack.core.classifier import classify

logger = structlog.get_logger()

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_ms(self, attempt: int) -> int:
        """Backoff before retrying after the *attempt*-th failure (1-based)."""
        return min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)


class RetryCoordinator:
    """Run an async operation, retrying while its failures classify as retryable.

    On a non-retryable failure, or once ``max_attempts`` is reached, the
    *original* exception is re-raised (never the classified wrapper).
    The attempt counter is reset on every exit path, so an idle
    coordinator is always at ``attempts == 0``.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    def reset(self) -> None:
        self._attempts = 0

    async def execute(self, operation: Callable[[], Awaitable[T]], *, context: str = "") -> T:
        while True:
            try:
                result = await operation()
            except Exception as exc:
                self._attempts += 1
                classified = classify(exc)
                if not classified.retryable or self._attempts >= self.policy.max_attempts:
                    logger.debug(
                        "retry_giving_up",
                        context=context,
                        attempts=self._attempts,
                        error_code=classified.code,
                        retryable=classified.retryable,
                    )
                    self.reset()
                    raise

                delay_ms = self.policy.delay_ms(self._attempts)
                logger.info(
                    "retry_scheduled",
                    context=context,
                    attempt=self._attempts,
                    delay_ms=delay_ms,
                    error_code=classified.code,
                )
                await self._sleep(delay_ms / 1000)
            else:
                self.reset()
                return result


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
    context: str = "",
) -> T:
    """Run *operation* under *policy* with a coordinator private to this call."""
    return await RetryCoordinator(policy, sleep=sleep).execute(operation, context=context)
