"""Failure classification at the boundary between raw and caller-visible errors.

``classify`` maps any raw failure onto the closed ``NormalizedFailure``
taxonomy. ``pack`` and ``pack_async`` run a callable and raise the classified
failure, and ``swallow`` / ``swallow_async`` run best-effort side actions whose
failures are logged and dropped.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stabilize.exceptions import (
    ExecutionFailure,
    IOFailure,
    NormalizedFailure,
    NotFoundFailure,
    UnknownFailure,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")

_RETRY_ATTEMPTS = 3
_RETRY_BACKOFF_MIN_SECONDS = 0.1
_RETRY_BACKOFF_MAX_SECONDS = 1.0


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _unwrap_retry(raw: RetryError) -> ExecutionFailure:
    """Expose the last attempt's error of an exhausted retry."""
    inner = raw.last_attempt.exception() if raw.last_attempt.failed else None
    cause = inner if inner is not None else raw
    return ExecutionFailure(f"{type(cause).__name__}: {cause}", cause)


def _unwrap_group(raw: BaseExceptionGroup[BaseException]) -> ExecutionFailure:
    """Expose the sole member of a group, or the group and all its members."""
    members = tuple(raw.exceptions)
    if len(members) == 1:
        cause = members[0]
        return ExecutionFailure(f"{type(cause).__name__}: {cause}", cause)
    return ExecutionFailure(
        f"{len(members)} concurrent failures: {raw.message}", raw, members
    )


def classify(raw: BaseException) -> NormalizedFailure:
    """Map a raw failure onto the normalized failure taxonomy.

    Matching is ordered and the first match wins:

    1. ``OSError`` or ``httpx.TransportError`` -> ``IOFailure``
    2. ``LookupError`` -> ``NotFoundFailure``
    3. ``NormalizedFailure`` -> returned unchanged
    4. ``BaseExceptionGroup`` or ``tenacity.RetryError`` -> ``ExecutionFailure``
       whose cause is unwrapped one level from the wrapper
    5. anything else -> ``UnknownFailure``

    Args:
        raw: The failure to classify.

    Returns:
        The normalized failure. Its ``cause`` is always the raw failure,
        except for execution failures, where it is the wrapped failure.
    """
    if isinstance(raw, (OSError, httpx.TransportError)):
        return IOFailure(str(raw) or type(raw).__name__, raw)
    if isinstance(raw, LookupError):
        return NotFoundFailure(str(raw) or type(raw).__name__, raw)
    if isinstance(raw, NormalizedFailure):
        return raw
    if isinstance(raw, RetryError):
        return _unwrap_retry(raw)
    if isinstance(raw, BaseExceptionGroup):
        return _unwrap_group(raw)
    return UnknownFailure(f"{type(raw).__name__}: {raw}", raw)


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------


def pack(getter: Callable[[], T]) -> T:
    """Call *getter* and raise any failure in its normalized form.

    Raises:
        NormalizedFailure: The classified failure, chained to its cause.
    """
    try:
        return getter()
    except Exception as exc:
        failure = classify(exc)
        if failure is exc:
            raise
        raise failure from failure.cause


async def pack_async(factory: Callable[[], Awaitable[T]]) -> T:
    """Await ``factory()`` and raise any failure in its normalized form.

    Raises:
        NormalizedFailure: The classified failure, chained to its cause.
    """
    try:
        return await factory()
    except Exception as exc:
        failure = classify(exc)
        if failure is exc:
            raise
        raise failure from failure.cause


# ---------------------------------------------------------------------------
# Swallowing
# ---------------------------------------------------------------------------


def _action_name(action: Callable[..., object]) -> str:
    return getattr(action, "__qualname__", None) or repr(action)


def swallow(action: Callable[[], object]) -> None:
    """Run a best-effort action, logging and discarding any failure."""
    try:
        action()
    except Exception:
        logger.warning(
            "swallowed_exception", action=_action_name(action), exc_info=True
        )


async def swallow_async(action: Callable[[], Awaitable[object]]) -> None:
    """Await a best-effort action, logging and discarding any failure."""
    try:
        await action()
    except Exception:
        logger.warning(
            "swallowed_exception", action=_action_name(action), exc_info=True
        )


# ---------------------------------------------------------------------------
# Caller-side retry
# ---------------------------------------------------------------------------


def retrying(
    predicate: Callable[[], Awaitable[bool]],
    attempts: int = _RETRY_ATTEMPTS,
    backoff_min_seconds: float = _RETRY_BACKOFF_MIN_SECONDS,
    backoff_max_seconds: float = _RETRY_BACKOFF_MAX_SECONDS,
    retry_on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
) -> Callable[[], Awaitable[bool]]:
    """Re-wrap a predicate so failing evaluations are retried with tenacity.

    The poller never retries a failing predicate. Callers who want that wrap
    the predicate here. Once all attempts fail, ``tenacity.RetryError``
    reaches the poller and is classified as an ``ExecutionFailure`` whose
    cause is the last attempt's error.

    Args:
        predicate: The async predicate to protect.
        attempts: Total evaluations per check, including the first.
        backoff_min_seconds: Lower bound of the exponential backoff.
        backoff_max_seconds: Upper bound of the exponential backoff.
        retry_on: Exception types worth retrying.

    Returns:
        A zero-argument async predicate.

    Raises:
        ValueError: If ``attempts`` is below 1.
    """
    if attempts < 1:
        msg = f"attempts must be at least 1, got {attempts}"
        raise ValueError(msg)

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(min=backoff_min_seconds, max=backoff_max_seconds),
        retry=retry_if_exception_type(retry_on),
        reraise=False,
    )
    async def _evaluate() -> bool:
        return bool(await predicate())

    return _evaluate
