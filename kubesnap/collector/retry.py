"""Retry policy with exponential back-off for calls to the source cluster.

Only ``TransientClusterError`` is retried.  ``PermanentClusterError`` (and any
other exception) propagates on the first occurrence so the caller can record
it without burning the retry budget.

A call is abandoned when either bound is hit first:

* ``max_attempts`` attempts have been made, or
* ``max_timeout`` seconds have elapsed since the first attempt.  The budget
  is enforced both before each sleep (never sleep past the deadline) and
  around the in-flight call via ``asyncio.timeout``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from kubesnap.cluster.client import TransientClusterError
from kubesnap.models.config import RetryConfig
from kubesnap.observability.metrics import retries_total

_log = structlog.get_logger(component="collector.retry")

_T = TypeVar("_T")


@dataclass(frozen=True)
class RetrySchedule:
    """Back-off parameters attached to every collection task."""

    max_attempts: int = 5
    base_delay: float = 0.1
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    max_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_timeout <= 0:
            raise ValueError(f"max_timeout must be positive, got {self.max_timeout}")

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetrySchedule:
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            backoff_multiplier=config.backoff_multiplier,
            max_delay=config.max_delay,
            max_timeout=config.max_timeout,
        )

    def delay(self, attempt: int) -> float:
        """Sleep before retry number ``attempt + 1`` (attempt counts from 0)."""
        return min(self.base_delay * self.backoff_multiplier**attempt, self.max_delay)


class RetryExhaustedError(Exception):
    """A transient failure persisted past the schedule's bounds."""

    def __init__(
        self,
        description: str,
        attempts: int,
        last_error: BaseException | None,
        timed_out: bool = False,
    ) -> None:
        bound = "timeout" if timed_out else "attempts"
        super().__init__(f"{description or 'call'} failed after {attempts} attempt(s) ({bound}): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        self.timed_out = timed_out

    @property
    def status(self) -> int | None:
        return getattr(self.last_error, "status", None)


async def retry_call(
    fn: Callable[[], Awaitable[_T]],
    schedule: RetrySchedule,
    *,
    description: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> _T:
    """Await ``fn()`` under *schedule*, retrying transient cluster errors.

    Raises:
        RetryExhaustedError: transient errors persisted past max_attempts or
            max_timeout.
        PermanentClusterError: on the first permanent failure.
    """
    deadline = clock() + schedule.max_timeout
    attempt = 0
    last_error: BaseException | None = None

    try:
        async with asyncio.timeout(schedule.max_timeout):
            while True:
                attempt += 1
                try:
                    return await fn()
                except TransientClusterError as exc:
                    last_error = exc

                if attempt >= schedule.max_attempts:
                    break
                delay = schedule.delay(attempt - 1)
                if clock() + delay >= deadline:
                    raise RetryExhaustedError(description, attempt, last_error, timed_out=True)

                retries_total.inc()
                _log.debug(
                    "transient_error_retrying",
                    call=description,
                    attempt=attempt,
                    delay=delay,
                    error=str(last_error),
                )
                await sleep(delay)
    except TimeoutError as exc:
        raise RetryExhaustedError(description, attempt, last_error or exc, timed_out=True) from exc

    raise RetryExhaustedError(description, attempt, last_error)
