"""Relay between the local terminal and a termproxy WebSocket.

The engine walks a fixed state machine::

    connecting -> handshaking -> active -> closing -> closed

While active, four tasks run side by side: stdin to socket, socket to
stdout, a keepalive ping timer and a SIGWINCH-driven resize watcher.
All outbound frames go through a single lock so that concurrent
producers never interleave on the wire.

SIGTERM and SIGHUP are caught for as long as the terminal is in raw
mode. They end the session through the normal closing path, so the
saved terminal mode is always restored before the process exits.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import ssl
import sys
from datetime import datetime
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidStatus,
    WebSocketException,
)

from pveterm.console.codec import (
    decode_output,
    encode_data,
    encode_handshake,
    encode_ping,
    encode_resize,
    split_at_disconnect,
)
from pveterm.console.terminal import RawTerminal
from pveterm.domain.models import RelayState, SessionDescriptor, SessionState, SessionStatus
from pveterm.errors import (
    AuthenticationError,
    ConsoleConnectionError,
    ConsoleError,
    ProtocolError,
    SessionTerminatedError,
)

logger = logging.getLogger(__name__)

# Seconds between keepalive pings sent to the server
DEFAULT_PING_INTERVAL = 120.0
# Bytes to read from stdin per readiness event
DEFAULT_READ_CHUNK_SIZE = 4096
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
DEFAULT_OPEN_TIMEOUT = 10.0

HANDSHAKE_OK = b"OK"

# Signals that end the session and must still restore the terminal
TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def build_referer(endpoint_url: str) -> str:
    """Referer that makes Proxmox speak xterm.js instead of binary VNC."""
    parts = urlsplit(endpoint_url)
    port = parts.port or 8006
    return (
        f"https://{parts.hostname}:{port}/"
        "?console=shell&xtermjs=1&vmid=0&vmname=&node=localhost&cmd="
    )


def build_ssl_context(verify_tls: bool) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not verify_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class RelayEngine:
    """Runs one interactive console session for a :class:`SessionDescriptor`.

    An engine is single-use: once :meth:`run` has returned or raised, a
    new engine is needed for another session.

    Example usage::

        engine = RelayEngine(descriptor)
        status = await engine.run()
    """

    def __init__(
        self,
        descriptor: SessionDescriptor,
        terminal: RawTerminal | None = None,
        stdin_fd: int | None = None,
        stdout_fd: int | None = None,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        wake_prompt: bool = True,
    ) -> None:
        self._descriptor = descriptor
        self._stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self._stdout_fd = sys.stdout.fileno() if stdout_fd is None else stdout_fd
        self._terminal = terminal if terminal is not None else RawTerminal(self._stdin_fd)
        self._ping_interval = ping_interval
        self._read_chunk_size = read_chunk_size
        self._handshake_timeout = handshake_timeout
        self._open_timeout = open_timeout
        self._wake_prompt = wake_prompt

        self._relay = RelayState()
        self._state: SessionState | None = None
        self._status: SessionStatus | None = None
        self._ws = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._send_lock = asyncio.Lock()
        self._input_queue: asyncio.Queue[bytes | OSError] = asyncio.Queue()
        self._resize_event = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._terminated_by: int | None = None
        self._reading_stdin = False

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def status(self) -> SessionStatus | None:
        return self._status

    @property
    def relay_state(self) -> RelayState:
        return self._relay

    async def run(self) -> SessionStatus:
        """Connect, authenticate and relay until the session ends.

        Returns:
            ``SessionStatus.CLEAN_DISCONNECT`` when the user pressed the
            disconnect key, stdin hit EOF, or the remote side closed.

        Raises:
            AuthenticationError: The termproxy ticket was rejected.
            ConsoleConnectionError: The WebSocket could not be opened or broke.
            ProtocolError: The handshake reply was not understood.
            SessionTerminatedError: SIGTERM or SIGHUP arrived mid-session.
            ConsoleError: Local terminal I/O failed.
        """
        if self._state is not None:
            raise RuntimeError("RelayEngine.run() may only be called once")

        self._loop = asyncio.get_running_loop()
        self._state = SessionState.CONNECTING
        self._status = SessionStatus.ERROR
        try:
            self._ws = await self._connect()
            with self._terminal.raw_mode():
                handled_signals = self._install_signal_handlers()
                try:
                    self._state = SessionState.HANDSHAKING
                    await self._handshake()
                    self._state = SessionState.ACTIVE
                    self._relay.open = True
                    await self._relay_until_closed()
                finally:
                    self._begin_closing()
                    for signum in handled_signals:
                        self._loop.remove_signal_handler(signum)
        finally:
            self._begin_closing()
            await self._close_socket()
            self._state = SessionState.CLOSED

        self._status = SessionStatus.CLEAN_DISCONNECT
        logger.info("Console session closed")
        return self._status

    def notify_resize(self) -> None:
        """Wake the resize watcher; installed as the SIGWINCH handler."""
        self._resize_event.set()

    def notify_terminate(self, signum: int) -> None:
        """Start closing the session; installed for SIGTERM and SIGHUP."""
        if self._terminated_by is None:
            logger.info("Received %s, closing console session", signal.Signals(signum).name)
            self._terminated_by = signum
        self._stop_event.set()

    # --- Connection setup ---

    async def _connect(self):
        url = self._descriptor.endpoint_url
        options = {
            "additional_headers": {
                "Cookie": self._descriptor.auth_cookie,
                "Referer": build_referer(url),
            },
            "subprotocols": ["binary"],
            "open_timeout": self._open_timeout,
        }
        if urlsplit(url).scheme == "wss":
            options["ssl"] = build_ssl_context(self._descriptor.verify_tls)

        logger.debug("Opening console WebSocket to %s", urlsplit(url).netloc)
        try:
            return await websockets.connect(url, **options)
        except InvalidStatus as e:
            status_code = e.response.status_code
            if status_code in (401, 403):
                raise AuthenticationError(
                    f"Console WebSocket rejected credentials (HTTP {status_code})"
                ) from e
            raise ConsoleConnectionError(
                f"Console WebSocket upgrade failed (HTTP {status_code})"
            ) from e
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise ConsoleConnectionError(f"Cannot open console WebSocket: {e}") from e

    async def _handshake(self) -> None:
        """Send ``user:ticket`` and wait for the server's OK."""
        try:
            await self._send(encode_handshake(self._descriptor.username, self._descriptor.session_ticket))
            reply = await asyncio.wait_for(
                self._unless_terminated(self._ws.recv()), timeout=self._handshake_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConsoleConnectionError("Timed out waiting for termproxy authentication") from e
        except ConnectionClosed as e:
            raise AuthenticationError(f"Termproxy closed the connection during authentication: {e}") from e
        except WebSocketException as e:
            raise ConsoleConnectionError(f"Termproxy handshake failed: {e}") from e

        data = decode_output(reply)
        if not data.startswith(HANDSHAKE_OK):
            raise ProtocolError(f"Unexpected termproxy handshake reply: {data[:40]!r}")
        logger.debug("Termproxy accepted ticket for %s", self._descriptor.username)
        # Output may arrive coalesced with the OK
        if len(data) > len(HANDSHAKE_OK):
            try:
                self._write_output(data[len(HANDSHAKE_OK):])
            except OSError as e:
                raise ConsoleError(f"Local terminal I/O failed: {e}") from e

    # --- Active state ---

    async def _relay_until_closed(self) -> None:
        loop = self._loop
        tasks: set[asyncio.Task[None]] = set()
        try:
            cols, rows = self._terminal.size()
            self._relay.terminal_size = (cols, rows)
            await self._send(encode_resize(cols, rows))
            if self._wake_prompt:
                await self._send(encode_data(b"\n"))

            loop.add_reader(self._stdin_fd, self._on_stdin_readable)
            self._reading_stdin = True

            tasks = {
                asyncio.create_task(self._input_loop(), name="relay-input"),
                asyncio.create_task(self._output_loop(), name="relay-output"),
                asyncio.create_task(self._keepalive_loop(), name="relay-keepalive"),
                asyncio.create_task(self._resize_loop(), name="relay-resize"),
                asyncio.create_task(self._stop_event.wait(), name="relay-terminate"),
            }
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            self._begin_closing()
            if self._terminated_by is not None:
                raise self._termination_error()
            for task in done:
                error = task.exception()
                if error is not None:
                    raise error
                logger.debug("Task %s finished, closing session", task.get_name())
        except ConnectionClosedOK as e:
            logger.info("Remote console closed the connection (%s)", e)
        except ConnectionClosedError as e:
            raise ConsoleConnectionError(f"Console connection dropped: {e}") from e
        except OSError as e:
            raise ConsoleError(f"Local terminal I/O failed: {e}") from e
        except WebSocketException as e:
            raise ConsoleConnectionError(f"Console WebSocket failed: {e}") from e
        finally:
            self._begin_closing()
            self._stop_reading_stdin()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _input_loop(self) -> None:
        while True:
            item = await self._input_queue.get()
            if isinstance(item, OSError):
                raise item
            if not item:
                logger.debug("stdin reached EOF")
                return
            forward, disconnect = split_at_disconnect(item)
            if forward:
                await self._send(encode_data(forward))
            if disconnect:
                logger.debug("Disconnect key pressed")
                return

    async def _output_loop(self) -> None:
        # Iteration ends quietly on a normal close
        async for message in self._ws:
            self._write_output(decode_output(message))

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            await self._send(encode_ping())
            self._relay.last_ping_sent_at = datetime.now()
            logger.debug("Sent keepalive ping")

    async def _resize_loop(self) -> None:
        while True:
            await self._resize_event.wait()
            self._resize_event.clear()
            size = self._terminal.size()
            if size == self._relay.terminal_size:
                continue
            self._relay.terminal_size = size
            await self._send(encode_resize(*size))
            logger.debug("Sent resize %dx%d", *size)

    # --- Helpers ---

    async def _send(self, message: bytes) -> None:
        async with self._send_lock:
            await self._ws.send(message)

    def _on_stdin_readable(self) -> None:
        try:
            data = os.read(self._stdin_fd, self._read_chunk_size)
        except OSError as e:
            self._stop_reading_stdin()
            self._input_queue.put_nowait(e)
            return
        if not data:
            # EOF stays readable forever
            self._stop_reading_stdin()
        self._input_queue.put_nowait(data)

    def _stop_reading_stdin(self) -> None:
        if self._reading_stdin:
            self._loop.remove_reader(self._stdin_fd)
            self._reading_stdin = False

    def _install_signal_handlers(self) -> list[int]:
        """Route SIGWINCH and the termination signals into the event loop.

        Returns the signals that were actually installed.
        """
        handlers = [(signal.SIGWINCH, self.notify_resize, ())]
        handlers += [(signum, self.notify_terminate, (signum,)) for signum in TERMINATION_SIGNALS]
        installed = []
        for signum, callback, args in handlers:
            try:
                self._loop.add_signal_handler(signum, callback, *args)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug("Cannot handle %s: %s", signal.Signals(signum).name, e)
                continue
            installed.append(signum)
        return installed

    async def _unless_terminated(self, awaitable):
        """Await ``awaitable`` unless a termination signal arrives first."""
        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, stop):
                task.cancel()
            await asyncio.gather(work, stop, return_exceptions=True)
        if self._terminated_by is not None:
            raise self._termination_error()
        return work.result()

    def _termination_error(self) -> SessionTerminatedError:
        name = signal.Signals(self._terminated_by).name
        return SessionTerminatedError(f"Session terminated by {name}", signum=self._terminated_by)

    def _write_output(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._stdout_fd, view)
            view = view[written:]

    def _begin_closing(self) -> None:
        if self._state in (SessionState.CONNECTING, SessionState.HANDSHAKING, SessionState.ACTIVE):
            self._state = SessionState.CLOSING
        self._relay.open = False

    async def _close_socket(self) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("Error closing console WebSocket: %s", e)
