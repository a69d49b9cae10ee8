"""Bounded polling and fixed-delay retry.

Every wait in the bootstrap is one of two shapes:

- ``bounded_poll``: ask a yes/no question at a fixed interval until it says
  yes or the attempt budget runs out. Returns a ``PollResult``; the caller
  decides whether a timeout is fatal, advisory or ignorable.
- ``retry_fixed``: run an operation until it stops raising, sleeping a fixed
  delay between attempts. Raises the last error on exhaustion.

No exponential backoff anywhere: intervals are fixed and counts bounded.

Usage:
    result = await bounded_poll(docker_ping, interval=5.0, max_attempts=12)
    if not result.succeeded:
        raise RuntimeUnavailableError()

    await retry_fixed(lambda: images.pull(ref), attempts=5, delay=10.0, operation="image_pull")
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from pydantic import BaseModel

from cihost.core.retryable import classify_error
from cihost.logging_schema import LogEvent
from cihost.metrics import RETRY_ATTEMPTS_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollOutcome(str, Enum):
    SUCCESS = "success"
    TIMED_OUT = "timed_out"


class PollResult(BaseModel):
    """Result of a bounded poll."""

    outcome: PollOutcome
    attempts: int

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> bool:
        return self.outcome == PollOutcome.SUCCESS


async def bounded_poll(
    check: Callable[[], Awaitable[bool]],
    interval: float,
    max_attempts: int | None,
    description: str = "condition",
) -> PollResult:
    """Poll ``check`` until it returns True or ``max_attempts`` is reached.

    A check that raises counts as a failed attempt. ``max_attempts=None``
    polls without a ceiling. There is no sleep after the final attempt.

    Args:
        check: Factory returning a new awaitable per attempt
        interval: Seconds between attempts
        max_attempts: Attempt ceiling, or None for unbounded
        description: Human-readable name for log lines

    Returns:
        PollResult with SUCCESS or TIMED_OUT and the attempts used
    """
    attempt = 0
    while max_attempts is None or attempt < max_attempts:
        attempt += 1
        try:
            if await check():
                return PollResult(outcome=PollOutcome.SUCCESS, attempts=attempt)
        except Exception as exc:
            logger.debug("Check for %s raised: %s", description, exc)

        if max_attempts is not None and attempt >= max_attempts:
            break
        logger.info("Waiting for %s", description)
        await asyncio.sleep(interval)

    logger.warning(
        "Gave up waiting for %s after %d attempts",
        description,
        attempt,
        extra={"event": LogEvent.POLL_TIMEOUT, "attempts": attempt, "interval": interval},
    )
    return PollResult(outcome=PollOutcome.TIMED_OUT, attempts=attempt)


async def retry_fixed(
    coro_factory: Callable[[], Awaitable[T]],
    attempts: int,
    delay: float,
    operation: str,
) -> T:
    """Execute async operation with a fixed number of fixed-delay attempts.

    Errors classified as permanent are raised immediately.

    Args:
        coro_factory: Factory function that creates new coroutine for each attempt
        attempts: Total attempts (not retries)
        delay: Seconds to sleep between attempts
        operation: Name used in logs and the retry metric

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The last exception if all attempts fail, or immediately
                   for permanent errors
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            RETRY_ATTEMPTS_TOTAL.labels(operation=operation).inc()
            error_class = classify_error(exc)

            if error_class == "permanent":
                logger.error(
                    "%s failed permanently (not retrying): %s",
                    operation,
                    exc,
                    extra={"event": LogEvent.RETRY_EXHAUSTED, "attempt": attempt},
                )
                raise

            if attempt == attempts:
                logger.error(
                    "%s failed after %d attempts: %s",
                    operation,
                    attempts,
                    exc,
                    extra={"event": LogEvent.RETRY_EXHAUSTED, "attempt": attempt},
                )
                raise

            logger.warning(
                "%s failed (attempt %d/%d, retry in %.1fs): %s",
                operation,
                attempt,
                attempts,
                delay,
                exc,
                extra={
                    "event": LogEvent.RETRY_ATTEMPT,
                    "error_class": error_class,
                    "attempt": attempt,
                    "delay": delay,
                },
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in retry_fixed")
