"""structlog configuration and poll-scoped logging context.

Provides poll ID generation, a context manager that binds poll metadata to
every log entry, and structured log configuration for console and JSON output
with optional file logging.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Poll ID
# ---------------------------------------------------------------------------


def generate_poll_id() -> str:
    """Generate a unique poll identifier.

    Returns:
        A UUID4 string.
    """
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# structlog configuration
# ---------------------------------------------------------------------------


_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# HTTP client loggers that emit one record per probe request.
_CLIENT_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    session_id: str | None = None,
) -> None:
    """Configure structlog for the application.

    Sets up structlog with shared processors and a format-specific
    renderer. Configures the stdlib logging root to respect the given
    level and optionally adds a file handler. HTTP client loggers stay
    at WARNING unless ``level`` is DEBUG, since a probe sends one request
    per check.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Output format: ``"console"`` for human-readable or
            ``"json"`` for machine-parseable.
        log_file: Optional file path for log output (in addition to stderr).
        session_id: Optional session ID to bind to all log entries.

    Raises:
        ValueError: If ``level`` is not a recognized log level.
    """
    level_upper = level.upper()
    if level_upper not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)

    numeric_level = getattr(logging, level_upper)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderers: list[structlog.types.Processor]
    if fmt == "json":
        renderers = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer()]

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates on re-configuration
    root_logger.handlers.clear()

    client_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(numeric_level)
    root_logger.addHandler(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setLevel(numeric_level)
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderers,
        ],
    )
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)

    if session_id:
        structlog.contextvars.bind_contextvars(session_id=session_id)


# ---------------------------------------------------------------------------
# Poll logging context manager
# ---------------------------------------------------------------------------


@contextmanager
def poll_logging_context(
    target: str,
    poll_id: str | None = None,
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Context manager that binds poll-level metadata to structlog.

    Logs the start and end of the poll and binds the target and poll ID to
    every log entry emitted within the context, including the poller's own.

    Args:
        target: Human-readable name of what is being waited for.
        poll_id: Identifier to bind; generated when omitted.
        **extra: Additional key-value pairs to bind.

    Yields:
        A bound structlog logger with poll context.

    Example::

        with poll_logging_context("broker-1:9092", debounce=2) as log:
            stable = await poller.poll(probe, timeout=30, debounce=2)
            log.info("poll_result", stable=stable)
    """
    poll_id = poll_id or generate_poll_id()
    structlog.contextvars.bind_contextvars(target=target, poll_id=poll_id, **extra)

    log: structlog.stdlib.BoundLogger = structlog.get_logger("stabilize.poll")
    log.info("poll_start")

    try:
        yield log
    except Exception:
        log.exception("poll_error")
        raise
    finally:
        log.info("poll_end")
        structlog.contextvars.unbind_contextvars("target", "poll_id", *extra.keys())
