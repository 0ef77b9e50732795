"""Centralized exception hierarchy for the stabilize package.

All errors raised by the package inherit from ``StabilizeError``. Failures
observed while polling an external system are normalized into exactly one of
five ``NormalizedFailure`` kinds, each of which keeps the raw failure as its
cause.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar


class StabilizeError(Exception):
    """Base exception for all stabilize errors."""


# ---------------------------------------------------------------------------
# Normalized failures
# ---------------------------------------------------------------------------


class FailureKind(StrEnum):
    """The closed set of normalized failure kinds."""

    IO = "io"
    NOT_FOUND = "not_found"
    EXECUTION = "execution"
    DOMAIN = "domain"
    UNKNOWN = "unknown"


class NormalizedFailure(StabilizeError):
    """A classified failure that always retains the raw failure as its cause.

    Attributes:
        cause: The original failure, also exposed as ``__cause__`` so that
            tracebacks render the full chain.
        kind: The failure kind of the concrete subclass.
    """

    kind: ClassVar[FailureKind]

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.__cause__ = cause


class IOFailure(NormalizedFailure):
    """Raised when an I/O or network operation failed."""

    kind = FailureKind.IO


class NotFoundFailure(NormalizedFailure):
    """Raised when a looked-up instance or key does not exist."""

    kind = FailureKind.NOT_FOUND


class ExecutionFailure(NormalizedFailure):
    """Raised when an asynchronous unit of work failed.

    ``cause`` is the failure inside the completion wrapper, not the wrapper.
    When the wrapper carried several failures, ``failures`` lists all of them.
    """

    kind = FailureKind.EXECUTION

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        failures: tuple[BaseException, ...] = (),
    ) -> None:
        super().__init__(message, cause)
        self.failures = failures or ((cause,) if cause is not None else ())


class DomainFailure(NormalizedFailure):
    """Base for errors that are already part of the caller-visible taxonomy.

    Subclasses pass through the classifier unchanged.
    """

    kind = FailureKind.DOMAIN


class UnknownFailure(NormalizedFailure):
    """Raised for any failure that matches no other kind."""

    kind = FailureKind.UNKNOWN


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------


class PollTimeoutError(DomainFailure):
    """Raised by blocking waits when the condition never held in time."""


class ProbeError(DomainFailure):
    """Raised when a probe is built with invalid arguments."""


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _cause_chain(exc: BaseException) -> list[str]:
    chain: list[str] = []
    seen: set[int] = set()
    current = exc.__cause__ or exc.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return chain


def describe(failure: BaseException) -> dict[str, Any]:
    """Flatten a failure into a dict suitable for structured logs.

    Args:
        failure: A normalized failure or any raw exception.

    Returns:
        Dict with ``kind``, ``type``, ``message`` and ``causes`` (the cause
        chain, outermost first, as ``"Type: message"`` strings).
    """
    kind = getattr(failure, "kind", None)
    return {
        "kind": str(kind) if kind is not None else None,
        "type": type(failure).__name__,
        "message": str(failure),
        "causes": _cause_chain(failure),
    }
