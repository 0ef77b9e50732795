"""Shared pytest fixtures for the stabilize test suite."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest
import structlog

# ---------------------------------------------------------------------------
# Deterministic time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually driven monotonic clock with a matching sleep primitive.

    ``sleep`` and ``async_sleep`` advance the clock instead of waiting, so
    polling tests run instantly and deterministically.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    async def async_sleep(self, seconds: float) -> None:
        self.sleep(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    """Return a fresh fake clock starting at zero."""
    return FakeClock()


# ---------------------------------------------------------------------------
# Logging isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Reset structlog and the stdlib root logger between tests."""
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Configuration isolation
# ---------------------------------------------------------------------------


@pytest.fixture()
def isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no ``STABILIZE_`` environment."""
    monkeypatch.chdir(tmp_path)
    for key in [k for k in os.environ if k.startswith("STABILIZE_")]:
        monkeypatch.delenv(key)
    return tmp_path
