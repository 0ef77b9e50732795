"""Debounced polling of eventually-consistent state.

A single true observation of a remote system is not trustworthy: brokers and
services may return out-of-date state or flap between answers. The poller
therefore requires a predicate to hold on ``debounce + 1`` consecutive checks,
spaced by a fixed pause, within one shared time budget.

Timeout is a normal outcome and yields ``False``. A predicate that raises is
a fault and surfaces as a ``NormalizedFailure``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from stabilize.budget import Clock, RetryBudget
from stabilize.classifier import pack_async
from stabilize.exceptions import NormalizedFailure, PollTimeoutError, describe

if TYPE_CHECKING:
    from stabilize.config import PollerSettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Predicate = Callable[[], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]

_DEFAULT_PAUSE_SECONDS = 0.3
_DEFAULT_WAIT_FOR_TIMEOUT = 10.0
_DEFAULT_WAIT_FOR_INTERVAL = 1.0


class PollStep(StrEnum):
    """Where a poll goes after an observation."""

    CONTINUE = "continue"
    SUCCEED = "succeed"
    EXPIRE = "expire"


def next_step(observed: bool, remaining_confirmations: int) -> PollStep:
    """Decide the step following one observation.

    Only a true observation made with no confirmations left succeeds.
    Everything else keeps polling; expiry is decided by the budget.
    """
    if observed and remaining_confirmations <= 0:
        return PollStep.SUCCEED
    return PollStep.CONTINUE


class DebouncedPoller:
    """Drives repeated evaluation of an async predicate until it is stable.

    Each call to :meth:`poll` owns its own budget and debounce counter, so
    one poller may serve any number of concurrent polls.

    Attributes:
        pause: Seconds to wait before every re-check.
    """

    def __init__(
        self,
        pause: float = _DEFAULT_PAUSE_SECONDS,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not pause > 0:
            msg = f"pause must be positive, got {pause}"
            raise ValueError(msg)
        self.pause = pause
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: PollerSettings,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> DebouncedPoller:
        """Build a poller from config settings."""
        return cls(pause=settings.pause_seconds, clock=clock, sleep=sleep)

    async def poll(
        self,
        predicate: Predicate,
        timeout: float | timedelta,
        debounce: int = 0,
    ) -> bool:
        """Poll *predicate* until it holds on ``debounce + 1`` consecutive checks.

        Args:
            predicate: Zero-argument async check of the awaited condition.
                It must be read-only, since it may run any number of times.
            timeout: Total time budget, in seconds or as a ``timedelta``.
            debounce: Extra consecutive true checks required after the first.
                Any false check restarts the streak.

        Returns:
            ``True`` once the condition is stable, ``False`` when the budget
            ran out first. A non-positive timeout returns ``False`` without
            evaluating the predicate.

        Raises:
            ValueError: If ``debounce`` is negative.
            NormalizedFailure: If the predicate raised. It is not evaluated
                again afterwards.
        """
        if debounce < 0:
            msg = f"debounce must not be negative, got {debounce}"
            raise ValueError(msg)

        budget = RetryBudget(timeout, clock=self._clock)
        log = logger.bind(timeout=budget.timeout, debounce=debounce)
        remaining_confirmations = debounce
        attempt = 0
        step = PollStep.CONTINUE

        while step is PollStep.CONTINUE:
            if budget.expired():
                step = PollStep.EXPIRE
                break

            attempt += 1
            try:
                observed = bool(await pack_async(predicate))
            except NormalizedFailure as failure:
                log.warning("poll_failed", attempt=attempt, **describe(failure))
                raise

            step = next_step(observed, remaining_confirmations)
            log.debug(
                "poll_observed",
                attempt=attempt,
                observed=observed,
                remaining_confirmations=remaining_confirmations,
                remaining_seconds=round(budget.remaining(), 3),
            )
            if step is PollStep.SUCCEED:
                break

            await self._sleep(self.pause)
            if observed:
                remaining_confirmations -= 1
            else:
                remaining_confirmations = debounce

        if step is PollStep.SUCCEED:
            log.info(
                "poll_stable", attempts=attempt, elapsed=round(budget.elapsed(), 3)
            )
            return True

        log.info(
            "poll_expired", attempts=attempt, elapsed=round(budget.elapsed(), 3)
        )
        return False


async def wait_until(
    predicate: Predicate,
    timeout: float | timedelta,
    debounce: int = 0,
) -> bool:
    """Poll *predicate* with a default :class:`DebouncedPoller`."""
    return await DebouncedPoller().poll(predicate, timeout, debounce)


def wait_for(
    done: Callable[[], bool],
    timeout: float | timedelta = _DEFAULT_WAIT_FOR_TIMEOUT,
    interval: float = _DEFAULT_WAIT_FOR_INTERVAL,
    clock: Clock = time.monotonic,
    sleep: Callable[[float], object] = time.sleep,
) -> None:
    """Block until *done* returns true, checking every *interval* seconds.

    Unlike :meth:`DebouncedPoller.poll`, failing checks are tolerated and
    retried, and running out of time is an error. *done* is always checked
    at least once, and once more at the deadline.

    Args:
        done: Synchronous check of the awaited condition.
        timeout: Total time budget, in seconds or as a ``timedelta``.
        interval: Seconds to sleep between checks.
        clock: Monotonic clock, in seconds.
        sleep: Blocking sleep primitive.

    Raises:
        ValueError: If *interval* is not positive.
        PollTimeoutError: If the condition never held in time. It is chained
            to the last error raised by *done*, if any.
    """
    if not interval > 0:
        msg = f"interval must be positive, got {interval}"
        raise ValueError(msg)

    budget = RetryBudget(timeout, clock=clock)
    last_error: Exception | None = None
    while True:
        try:
            if done():
                return
        except Exception as exc:
            last_error = exc
            logger.debug("wait_for_check_failed", error=str(exc))
        if budget.expired():
            break
        sleep(interval)

    msg = f"condition not met within {budget.timeout:g}s"
    if last_error is not None:
        raise PollTimeoutError(msg, last_error) from last_error
    raise PollTimeoutError(msg)
