"""
In-process execution substrate for pipeline steps.

Provides the three guarantees the orchestration engine relies on:
- steps keyed by an idempotency key run at most once to completion per run
- fallible steps are retried in place with bounded attempts and backoff
- throttling and concurrency limits queue callers instead of rejecting them
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from orchestrator.errors import GenerationUnavailable, RetryExhausted
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_s: float = 1.0
    backoff_factor: float = 2.0
    max_backoff_s: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (GenerationUnavailable,)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff_s <= 0:
            return 0.0
        return min(self.backoff_s * (self.backoff_factor ** (attempt - 1)), self.max_backoff_s)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


NO_RETRY = RetryPolicy(max_retries=0, backoff_s=0.0)


class StepRunner:
    """
    Runs named steps for one unit of work (a pipeline run or one agent task).

    A step that already completed under the same id returns its recorded
    result instead of running again, so a re-entered stage never repeats
    finished work.
    """

    def __init__(
        self,
        run_id: str,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.run_id = run_id
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._completed: dict[str, Any] = {}
        self.attempts: dict[str, int] = {}

    def has_completed(self, step_id: str) -> bool:
        return step_id in self._completed

    async def run(
        self,
        step_id: str,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        if step_id in self._completed:
            logger.debug(
                f"Step '{step_id}' already completed, reusing result",
                extra={"extra_fields": {"run_id": self.run_id, "step": step_id}},
            )
            return self._completed[step_id]

        policy = policy or self.policy
        attempt = 0
        while True:
            attempt += 1
            self.attempts[step_id] = attempt
            try:
                result = await fn()
            except Exception as e:
                if not policy.is_retryable(e):
                    raise
                if attempt >= policy.max_attempts:
                    logger.warning(
                        f"Step '{step_id}' exhausted {attempt} attempts",
                        extra={
                            "extra_fields": {
                                "run_id": self.run_id,
                                "step": step_id,
                                "attempts": attempt,
                                "error": str(e),
                                "error_type": type(e).__name__,
                            }
                        },
                    )
                    raise RetryExhausted(step_id, attempt, e) from e

                delay = policy.backoff_for(attempt)
                logger.info(
                    f"Retrying step '{step_id}' in {delay:.2f}s (attempt {attempt}/{policy.max_attempts})",
                    extra={
                        "extra_fields": {
                            "run_id": self.run_id,
                            "step": step_id,
                            "attempt": attempt,
                            "error_type": type(e).__name__,
                        }
                    },
                )
                await self._sleep(delay)
                continue

            self._completed[step_id] = result
            return result

    async def invoke(self, step_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run a nested unit of work once and record its structured result; no outer retry."""
        return await self.run(step_id, fn, policy=NO_RETRY)


class RollingWindowLimiter:
    """
    Allows at most ``limit`` acquisitions per key within any ``period_s`` window.

    Callers over the limit wait (FIFO per key) until the oldest acquisition
    leaves the window; nothing is dropped.
    """

    def __init__(
        self,
        limit: int,
        period_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.period_s = period_s
        self._clock = clock
        self._sleep = sleep
        self._windows: dict[str, deque[float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _evict(self, window: deque[float], now: float) -> None:
        while window and now - window[0] >= self.period_s:
            window.popleft()

    def in_window(self, key: str) -> int:
        window = self._windows.get(key)
        if not window:
            return 0
        self._evict(window, self._clock())
        return len(window)

    async def acquire(self, key: str = "global") -> float:
        """
        Wait for a slot under ``key``.

        Returns:
            Seconds spent waiting for the window to open
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        window = self._windows.setdefault(key, deque())
        waited = 0.0
        async with lock:
            while True:
                now = self._clock()
                self._evict(window, now)
                if len(window) < self.limit:
                    window.append(now)
                    return waited
                delay = max(self.period_s - (now - window[0]), 0.0)
                logger.info(
                    f"Throttled '{key}', waiting {delay:.2f}s",
                    extra={"extra_fields": {"throttle_key": key, "limit": self.limit}},
                )
                waited += delay
                await self._sleep(delay)


class ConcurrencyGate:
    """Bounded number of simultaneous holders; extra callers queue on the semaphore."""

    def __init__(self, limit: int):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.active = 0
        self.peak = 0

    async def __aenter__(self) -> "ConcurrencyGate":
        await self._semaphore.acquire()
        self.active += 1
        self.peak = max(self.peak, self.active)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.active -= 1
        self._semaphore.release()
