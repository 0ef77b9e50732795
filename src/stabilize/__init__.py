"""stabilize: debounced polling of eventually-consistent cluster state."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from stabilize.budget import RetryBudget
from stabilize.classifier import classify, pack, pack_async, retrying, swallow
from stabilize.exceptions import (
    DomainFailure,
    ExecutionFailure,
    FailureKind,
    IOFailure,
    NormalizedFailure,
    NotFoundFailure,
    StabilizeError,
    UnknownFailure,
)
from stabilize.poller import DebouncedPoller, wait_for, wait_until

try:
    __version__ = version("stabilize")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "DebouncedPoller",
    "DomainFailure",
    "ExecutionFailure",
    "FailureKind",
    "IOFailure",
    "NormalizedFailure",
    "NotFoundFailure",
    "RetryBudget",
    "StabilizeError",
    "UnknownFailure",
    "__version__",
    "classify",
    "pack",
    "pack_async",
    "retrying",
    "swallow",
    "wait_for",
    "wait_until",
]
