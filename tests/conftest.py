"""Shared test fixtures for the pveterm test suite.

Provides common fixtures used across unit tests: sample guests and
tickets, a fake termproxy WebSocket, a fake terminal and real pipes
standing in for stdin/stdout.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from pveterm.domain.models import (
    AuthTicket,
    Guest,
    GuestType,
    SessionDescriptor,
    TermproxyTicket,
)


# ---------------------------------------------------------------------------
# Guest / Ticket Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def running_guest() -> Guest:
    return Guest(vmid=100, node="pve1", status="running", guest_type=GuestType.QEMU, name="web01")


@pytest.fixture
def stopped_guest() -> Guest:
    return Guest(vmid=100, node="pve1", status="stopped", guest_type=GuestType.QEMU, name="web01")


@pytest.fixture
def auth_ticket() -> AuthTicket:
    return AuthTicket(ticket="PVE:root@pam:4EEC61E2::sig", csrf_token="4EEC61E2:csrf", username="root@pam")


@pytest.fixture
def termproxy_ticket() -> TermproxyTicket:
    return TermproxyTicket(port=5900, ticket="PVEVNC:abc123", user="root@pam")


@pytest.fixture
def descriptor() -> SessionDescriptor:
    return SessionDescriptor(
        endpoint_url=(
            "wss://pve1.example.com:8006/api2/json/nodes/pve1/qemu/100/vncwebsocket"
            "?port=5900&vncticket=PVEVNC%3Aabc123"
        ),
        auth_cookie="PVEAuthCookie=PVE:root@pam:4EEC61E2::sig",
        username="root@pam",
        session_ticket="PVEVNC:abc123",
        verify_tls=True,
    )


# ---------------------------------------------------------------------------
# Relay Fakes
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection.

    Inbound messages are queued with :meth:`feed`. :meth:`hang_up`
    simulates an orderly close by the server and :meth:`drop` a
    connection lost without a close frame.
    """

    def __init__(self, handshake_reply: bytes | str | None = b"OK") -> None:
        self.sent: list[bytes] = []
        self.close_calls = 0
        self.send_error: Exception | None = None
        self._inbound: asyncio.Queue[bytes | str | Exception | None] = asyncio.Queue()
        if handshake_reply is not None:
            self._inbound.put_nowait(handshake_reply)

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def feed(self, message: bytes | str) -> None:
        self._inbound.put_nowait(message)

    def hang_up(self) -> None:
        self._inbound.put_nowait(None)

    def drop(self) -> None:
        self._inbound.put_nowait(ConnectionClosedError(None, None))

    async def send(self, message: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def recv(self) -> bytes | str:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            raise item
        if item is None:
            raise ConnectionClosedOK(None, None)
        return item

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> bytes | str:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            raise item
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.close_calls += 1


class FakeTerminal:
    """Counts raw-mode entries and restorations."""

    def __init__(self, size: tuple[int, int] = (80, 24)) -> None:
        self.enter_calls = 0
        self.restore_calls = 0
        self.current_size = size

    @contextmanager
    def raw_mode(self) -> Iterator[str]:
        self.enter_calls += 1
        try:
            yield "saved-mode"
        finally:
            self.restore_calls += 1

    def size(self) -> tuple[int, int]:
        return self.current_size


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def fake_terminal() -> FakeTerminal:
    return FakeTerminal()


@pytest.fixture
def stdio_pipes() -> Iterator[dict[str, int]]:
    """Real pipes for stdin and stdout so the event loop can watch them."""
    stdin_r, stdin_w = os.pipe()
    stdout_r, stdout_w = os.pipe()
    os.set_blocking(stdout_r, False)
    fds = {"stdin_r": stdin_r, "stdin_w": stdin_w, "stdout_r": stdout_r, "stdout_w": stdout_w}
    yield fds
    for fd in fds.values():
        try:
            os.close(fd)
        except OSError:
            pass


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable:
    """Poll a predicate until it holds or fail the test."""
    return _wait_until


@pytest.fixture
def make_fake_ws() -> type[FakeWebSocket]:
    """The FakeWebSocket class, for tests that need a custom handshake reply."""
    return FakeWebSocket
