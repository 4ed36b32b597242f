"""
Poll / Backoff Driver
=====================
Generic waiting loops used by the remote analyzer.

Two loops are provided:
- wait_until_ready: variable-interval readiness polling with a hard
  elapsed-time ceiling
- wait_for_job: fixed-interval job status polling with an attempt
  ceiling and a consecutive transient-error budget

Sleep and clock functions are injectable so callers can run the loops
in virtual time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from .base import AnalyzerFailed

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
ClockFunc = Callable[[], float]


class ReadinessResult(Enum):
    """Outcome of a single readiness check."""
    READY = "ready"
    NOT_READY = "not_ready"


class JobState(Enum):
    """Normalized job status reported by a remote analyzer."""
    COMPLETED = "completed"
    FAILED = "failed"
    RUNNING = "running"


class TransientPollError(Exception):
    """A single poll request failed in a way worth retrying."""
    pass


@dataclass(frozen=True)
class BackoffPolicy:
    """Readiness wait schedule followed by a steady interval."""
    schedule: Tuple[float, ...] = (1, 2, 4, 8, 15)
    steady_interval: float = 30
    max_elapsed: float = 300

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based attempt."""
        if attempt <= len(self.schedule):
            return self.schedule[attempt - 1]
        return self.steady_interval


@dataclass(frozen=True)
class FixedIntervalPolicy:
    """Job polling cadence and budgets."""
    interval: float = 5
    max_attempts: int = 120
    max_consecutive_errors: int = 3


async def wait_until_ready(
    check: Callable[[], Awaitable[ReadinessResult]],
    policy: BackoffPolicy = BackoffPolicy(),
    description: str = "resource",
    sleep: SleepFunc = asyncio.sleep,
    clock: ClockFunc = time.monotonic,
) -> int:
    """
    Poll until the check reports READY.

    The check decides what "not ready" means (e.g. a 503 or a body without
    the expected field). Exceptions from the check propagate.

    Args:
        check: Coroutine factory returning a ReadinessResult
        policy: Wait schedule and total ceiling
        description: Used in log and error messages
        sleep: Awaitable sleep function
        clock: Monotonic clock in seconds

    Returns:
        Number of attempts made

    Raises:
        AnalyzerFailed: If the ceiling is reached before READY
    """
    started = clock()
    attempt = 0

    while True:
        attempt += 1
        if await check() == ReadinessResult.READY:
            logger.info(f"{description} ready after {attempt} attempts")
            return attempt

        elapsed = clock() - started
        remaining = policy.max_elapsed - elapsed
        if remaining <= 0:
            raise AnalyzerFailed(
                f"Timed out waiting for {description} after {elapsed:.0f}s "
                f"({attempt} attempts)"
            )

        delay = min(policy.delay_for(attempt), remaining)
        logger.debug(f"{description} not ready (attempt {attempt}), waiting {delay:.0f}s")
        await sleep(delay)


async def wait_for_job(
    poll: Callable[[], Awaitable[JobState]],
    policy: FixedIntervalPolicy = FixedIntervalPolicy(),
    description: str = "job",
    sleep: SleepFunc = asyncio.sleep,
) -> int:
    """
    Poll a job until it completes.

    Args:
        poll: Coroutine factory returning the current JobState; raises
            TransientPollError for a retryable request failure
        policy: Interval and budgets
        description: Used in log and error messages
        sleep: Awaitable sleep function

    Returns:
        Number of attempts made

    Raises:
        AnalyzerFailed: On a failed job, exhausted attempts, or too many
            consecutive transient errors
    """
    consecutive_errors = 0
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            state = await poll()
        except TransientPollError as e:
            consecutive_errors += 1
            last_error = e
            logger.warning(
                f"Polling {description} failed "
                f"({consecutive_errors}/{policy.max_consecutive_errors}): {e}"
            )
            if consecutive_errors >= policy.max_consecutive_errors:
                raise AnalyzerFailed(
                    f"Polling {description} failed {consecutive_errors} times in a row: {last_error}"
                ) from e
        else:
            consecutive_errors = 0
            if state == JobState.COMPLETED:
                logger.info(f"{description} completed after {attempt} polls")
                return attempt
            if state == JobState.FAILED:
                raise AnalyzerFailed(f"{description} reported failure")

        if attempt < policy.max_attempts:
            await sleep(policy.interval)

    raise AnalyzerFailed(
        f"{description} did not complete within {policy.max_attempts} polls"
    )
