"""Unit tests for stabilize.probes."""

from __future__ import annotations

import asyncio
import errno
import socket

import httpx
import pytest

from stabilize.exceptions import IOFailure, ProbeError
from stabilize.poller import DebouncedPoller
from stabilize.probes import all_of, http_probe, tcp_probe


def _client(status: int = 200, error: Exception | None = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if error is not None:
            raise error
        return httpx.Response(status)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _fail_connect(monkeypatch: pytest.MonkeyPatch, *errors: OSError) -> None:
    async def connect(host: str, port: int, **kwargs: object) -> None:
        raise ExceptionGroup("create_connection failed", list(errors))

    monkeypatch.setattr(asyncio, "open_connection", connect)


# ---------------------------------------------------------------------------
# http_probe
# ---------------------------------------------------------------------------


class TestHttpProbe:
    """http_probe observes the status code of a GET request."""

    @pytest.mark.asyncio
    async def test_ok_status_holds(self) -> None:
        async with _client(200) as client:
            assert await http_probe("http://broker:8080/health", client=client)()

    @pytest.mark.asyncio
    async def test_unavailable_status_observes_false(self) -> None:
        async with _client(503) as client:
            assert not await http_probe("http://broker:8080/health", client=client)()

    @pytest.mark.asyncio
    async def test_custom_expected_status(self) -> None:
        async with _client(404) as client:
            probe = http_probe(
                "https://api.example.com/topics/old",
                expected_status={404},
                client=client,
            )
            assert await probe()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        async with _client(error=httpx.ConnectError("refused")) as client:
            with pytest.raises(httpx.ConnectError):
                await http_probe("http://broker:8080/", client=client)()

    @pytest.mark.asyncio
    async def test_transport_error_becomes_io_failure_when_polled(self) -> None:
        async with _client(error=httpx.ConnectError("refused")) as client:
            probe = http_probe("http://broker:8080/", client=client)
            with pytest.raises(IOFailure) as info:
                await DebouncedPoller(pause=0.001).poll(probe, timeout=1.0)
        assert isinstance(info.value.cause, httpx.ConnectError)

    @pytest.mark.parametrize("url", ["not a url", "ftp://host/file", "http://"])
    def test_invalid_url_rejected(self, url: str) -> None:
        with pytest.raises(ProbeError, match="absolute http"):
            http_probe(url)


# ---------------------------------------------------------------------------
# tcp_probe
# ---------------------------------------------------------------------------


class TestTcpProbe:
    """tcp_probe observes whether a port accepts connections."""

    @pytest.mark.asyncio
    async def test_listening_port_holds(self) -> None:
        async def handle(
            reader: asyncio.StreamReader, writer: asyncio.StreamWriter
        ) -> None:
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            assert await tcp_probe("127.0.0.1", port, timeout=1.0)()

    @pytest.mark.asyncio
    async def test_closed_port_observes_false(self) -> None:
        assert not await tcp_probe("127.0.0.1", _free_port(), timeout=1.0)()

    @pytest.mark.asyncio
    async def test_every_address_refused_observes_false(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        port = _free_port()
        loop = asyncio.get_running_loop()

        async def two_addresses(
            host: str, port: int, **kwargs: object
        ) -> list[tuple[object, ...]]:
            return [
                (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", port)),
                (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.2", port)),
            ]

        monkeypatch.setattr(loop, "getaddrinfo", two_addresses)
        assert not await tcp_probe("broker-1", port, timeout=1.0)()

    @pytest.mark.asyncio
    async def test_refused_beside_unreachable_observes_false(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _fail_connect(
            monkeypatch,
            ConnectionRefusedError(errno.ECONNREFUSED, "refused"),
            OSError(errno.ENETUNREACH, "network unreachable"),
        )
        assert not await tcp_probe("localhost", 9092)()

    @pytest.mark.asyncio
    async def test_unreachable_host_raises_os_error(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _fail_connect(monkeypatch, OSError(errno.EHOSTUNREACH, "no route to host"))
        with pytest.raises(OSError, match="broker-1:9092") as info:
            await tcp_probe("broker-1", 9092)()
        assert isinstance(info.value.__cause__, ExceptionGroup)

    @pytest.mark.asyncio
    async def test_unreachable_host_becomes_io_failure_when_polled(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _fail_connect(monkeypatch, OSError(errno.EHOSTUNREACH, "no route to host"))
        with pytest.raises(IOFailure):
            await DebouncedPoller(pause=0.001).poll(
                tcp_probe("broker-1", 9092), timeout=1.0
            )

    @pytest.mark.asyncio
    async def test_reset_while_closing_still_holds(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        class ResettingWriter:
            def close(self) -> None:
                pass

            async def wait_closed(self) -> None:
                raise ConnectionResetError(errno.ECONNRESET, "reset by peer")

        async def connect(
            host: str, port: int, **kwargs: object
        ) -> tuple[None, ResettingWriter]:
            return None, ResettingWriter()

        monkeypatch.setattr(asyncio, "open_connection", connect)
        assert await tcp_probe("broker-1", 9092)()

    def test_empty_host_rejected(self) -> None:
        with pytest.raises(ProbeError, match="host"):
            tcp_probe("", 9092)

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_port_out_of_range_rejected(self, port: int) -> None:
        with pytest.raises(ProbeError, match="port"):
            tcp_probe("localhost", port)


# ---------------------------------------------------------------------------
# all_of
# ---------------------------------------------------------------------------


class TestAllOf:
    """all_of combines probes in order."""

    @pytest.mark.asyncio
    async def test_all_true(self) -> None:
        async def yes() -> bool:
            return True

        assert await all_of(yes, yes)()

    @pytest.mark.asyncio
    async def test_stops_at_first_false(self) -> None:
        calls: list[str] = []

        async def first() -> bool:
            calls.append("first")
            return False

        async def second() -> bool:
            calls.append("second")
            return True

        assert not await all_of(first, second)()
        assert calls == ["first"]

    def test_requires_a_probe(self) -> None:
        with pytest.raises(ProbeError):
            all_of()
