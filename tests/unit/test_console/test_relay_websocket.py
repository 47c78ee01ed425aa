"""Relay engine against a real local WebSocket server.

The server plays the termproxy side: it reads the ``user:ticket`` line,
answers ``OK`` as a text message and then exchanges frames.
"""

from __future__ import annotations

import asyncio
import os

import pytest
from websockets.asyncio.server import ServerConnection, serve

from pveterm.console.relay import RelayEngine
from pveterm.domain.models import SessionDescriptor, SessionState, SessionStatus
from pveterm.errors import AuthenticationError, ConsoleConnectionError

VNC_PATH = "/api2/json/nodes/pve1/qemu/100/vncwebsocket?port=5900&vncticket=PVEVNC%3Aabc123"


@pytest.fixture
def make_engine(fake_terminal, stdio_pipes):
    def _make(server) -> RelayEngine:
        port = next(iter(server.sockets)).getsockname()[1]
        descriptor = SessionDescriptor(
            endpoint_url=f"ws://127.0.0.1:{port}{VNC_PATH}",
            auth_cookie="PVEAuthCookie=PVE:root@pam:4EEC61E2::sig",
            username="root@pam",
            session_ticket="PVEVNC:abc123",
            verify_tls=False,
        )
        return RelayEngine(
            descriptor,
            terminal=fake_terminal,
            stdin_fd=stdio_pipes["stdin_r"],
            stdout_fd=stdio_pipes["stdout_w"],
            wake_prompt=False,
            handshake_timeout=2.0,
            open_timeout=2.0,
        )

    return _make


class TestTermproxyRoundTrip:
    @pytest.mark.asyncio
    async def test_session_over_real_socket(self, make_engine, fake_terminal, stdio_pipes) -> None:
        seen = {}

        async def termproxy(ws: ServerConnection) -> None:
            seen["cookie"] = ws.request.headers["Cookie"]
            seen["referer"] = ws.request.headers["Referer"]
            seen["subprotocol"] = ws.subprotocol
            seen["handshake"] = await ws.recv()
            await ws.send("OK")
            seen["resize"] = await ws.recv()
            seen["keys"] = await ws.recv()
            await ws.send(b"root@web01:~# ")
            await ws.close()

        os.write(stdio_pipes["stdin_w"], b"ls\r")
        async with serve(termproxy, "127.0.0.1", 0, subprotocols=["binary"]) as server:
            engine = make_engine(server)
            status = await asyncio.wait_for(engine.run(), timeout=5)

        assert status is SessionStatus.CLEAN_DISCONNECT
        assert engine.state is SessionState.CLOSED
        assert fake_terminal.restore_calls == 1
        assert os.read(stdio_pipes["stdout_r"], 1024) == b"root@web01:~# "

        assert seen["cookie"] == "PVEAuthCookie=PVE:root@pam:4EEC61E2::sig"
        assert "xtermjs=1" in seen["referer"]
        assert seen["subprotocol"] == "binary"
        # Frames travel as binary messages
        assert seen["handshake"] == b"root@pam:PVEVNC:abc123\n"
        assert seen["resize"] == b"1:80:24:"
        assert seen["keys"] == b"0:3:ls\r"

    @pytest.mark.asyncio
    async def test_aborted_transport_is_an_error(self, make_engine, fake_terminal) -> None:
        async def termproxy(ws: ServerConnection) -> None:
            await ws.recv()
            await ws.send("OK")
            await ws.recv()
            ws.transport.abort()

        async with serve(termproxy, "127.0.0.1", 0, subprotocols=["binary"]) as server:
            engine = make_engine(server)
            with pytest.raises(ConsoleConnectionError):
                await asyncio.wait_for(engine.run(), timeout=5)

        assert engine.status is SessionStatus.ERROR
        assert engine.state is SessionState.CLOSED
        assert fake_terminal.restore_calls == 1

    @pytest.mark.asyncio
    async def test_ticket_refused(self, make_engine, fake_terminal) -> None:
        async def termproxy(ws: ServerConnection) -> None:
            await ws.recv()
            await ws.close()

        async with serve(termproxy, "127.0.0.1", 0, subprotocols=["binary"]) as server:
            engine = make_engine(server)
            with pytest.raises(AuthenticationError):
                await asyncio.wait_for(engine.run(), timeout=5)

        assert fake_terminal.restore_calls == 1
