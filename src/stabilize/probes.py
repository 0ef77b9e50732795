"""Read-only predicates for common readiness checks.

Every factory returns a zero-argument coroutine function suitable for
:meth:`stabilize.poller.DebouncedPoller.poll`. A probe observes ``False``
when the awaited state is simply not reached yet, and raises when the check
itself cannot be carried out.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Container

import httpx
import structlog

from stabilize.exceptions import ProbeError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Probe = Callable[[], Awaitable[bool]]

_DEFAULT_TIMEOUT_SECONDS = 5.0
_OK_STATUSES = range(200, 300)
_CLOSED_ERRORS = (ConnectionRefusedError, TimeoutError)


def http_probe(
    url: str,
    expected_status: Container[int] = _OK_STATUSES,
    client: httpx.AsyncClient | None = None,
    timeout: float = _DEFAULT_TIMEOUT_SECONDS,
) -> Probe:
    """Probe that holds while ``GET url`` answers with an expected status.

    Transport errors (refused connections, timeouts) are raised, so the
    poller reports them as I/O failures. Wrap the probe with
    :func:`stabilize.classifier.retrying` to tolerate them instead.

    Args:
        url: Absolute http(s) URL to request.
        expected_status: Status codes that count as healthy.
        client: Optional shared client. A short-lived client is opened per
            check when omitted.
        timeout: Per-request timeout in seconds, used without *client*.

    Returns:
        An async predicate.

    Raises:
        ProbeError: If *url* is not an absolute http(s) URL.
    """
    msg = f"http probe needs an absolute http(s) URL, got {url!r}"
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ProbeError(msg, exc) from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ProbeError(msg)

    async def _check(http: httpx.AsyncClient) -> bool:
        response = await http.get(parsed)
        healthy = response.status_code in expected_status
        if not healthy:
            logger.debug("http_probe_unhealthy", url=url, status=response.status_code)
        return healthy

    async def _probe() -> bool:
        if client is not None:
            return await _check(client)
        async with httpx.AsyncClient(timeout=timeout) as http:
            return await _check(http)

    return _probe


def _refused(group: ExceptionGroup[Exception]) -> bool:
    """Whether a multi-address connect failed only because nothing listens.

    Some addresses of a dual-stack host may be unroutable while the others
    refuse; that still means the port is not open yet.
    """
    closed, other = group.split(_CLOSED_ERRORS)
    if closed is None:
        return False
    return other is None or all(isinstance(exc, OSError) for exc in other.exceptions)


def tcp_probe(
    host: str,
    port: int,
    timeout: float = _DEFAULT_TIMEOUT_SECONDS,
) -> Probe:
    """Probe that holds while a TCP connection to ``host:port`` can be opened.

    A refused or timed-out connection observes ``False``: a port that is not
    listening yet is exactly the state being waited out. This holds for every
    address *host* resolves to. Any other connect failure is raised as an
    ``OSError``.

    Raises:
        ProbeError: If *host* is empty or *port* is out of range.
    """
    if not host:
        msg = "tcp probe needs a host"
        raise ProbeError(msg)
    if not 0 < port < 65536:
        msg = f"tcp probe port must be in 1..65535, got {port}"
        raise ProbeError(msg)

    async def _probe() -> bool:
        try:
            async with asyncio.timeout(timeout):
                _, writer = await asyncio.open_connection(
                    host, port, all_errors=True
                )
        except TimeoutError:
            logger.debug("tcp_probe_closed", host=host, port=port)
            return False
        except ExceptionGroup as group:
            if not _refused(group):
                msg = f"connect to {host}:{port} failed: {group.exceptions[0]}"
                raise OSError(msg) from group
            logger.debug("tcp_probe_closed", host=host, port=port)
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    return _probe


def all_of(*probes: Probe) -> Probe:
    """Probe that holds while every given probe holds.

    Probes are evaluated in order and evaluation stops at the first ``False``.

    Raises:
        ProbeError: If no probe is given.
    """
    if not probes:
        msg = "all_of needs at least one probe"
        raise ProbeError(msg)

    async def _probe() -> bool:
        for probe in probes:
            if not await probe():
                return False
        return True

    return _probe
