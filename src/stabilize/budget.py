"""Wall-clock time budget shared across a chain of attempts."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from datetime import timedelta

Clock = Callable[[], float]


def to_seconds(value: float | timedelta) -> float:
    """Normalize a timeout given as seconds or a ``timedelta``.

    Raises:
        ValueError: If the value is NaN, which no deadline can be built from.
    """
    if isinstance(value, timedelta):
        return value.total_seconds()
    seconds = float(value)
    if math.isnan(seconds):
        msg = "timeout must be a number of seconds, got NaN"
        raise ValueError(msg)
    return seconds


class RetryBudget:
    """Tracks the time left until a fixed deadline.

    The budget starts when it is constructed. Remaining time is recomputed
    from the clock on every query, so it never grows between attempts.
    A budget belongs to exactly one poll chain.

    Attributes:
        timeout: Total allowance in seconds.
        started: Clock reading at construction.
        deadline: Clock reading at which the budget is exhausted.
    """

    __slots__ = ("_clock", "deadline", "started", "timeout")

    def __init__(
        self, timeout: float | timedelta, clock: Clock = time.monotonic
    ) -> None:
        self._clock = clock
        self.timeout = to_seconds(timeout)
        self.started = clock()
        self.deadline = self.started + self.timeout

    def elapsed(self) -> float:
        """Seconds spent since the budget started."""
        return self._clock() - self.started

    def remaining(self) -> float:
        """Seconds left before the deadline; zero or negative once spent."""
        return self.timeout - self.elapsed()

    def expired(self) -> bool:
        """Whether no time is left for another attempt."""
        return self.remaining() <= 0

    def __repr__(self) -> str:
        return (
            f"RetryBudget(timeout={self.timeout!r}, "
            f"remaining={self.remaining():.3f})"
        )
