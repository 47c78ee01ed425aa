"""Orchestrates an interactive console session to a VM or container.

Handles authentication (session ticket), termproxy setup, WebSocket URL
construction, and hands the result to a :class:`RelayEngine`.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlsplit

from pveterm.api.client import ProxmoxApiError, ProxmoxClient
from pveterm.config.settings import ConsoleConfig
from pveterm.console.relay import RelayEngine
from pveterm.domain.models import Guest, SessionDescriptor, SessionStatus
from pveterm.errors import AuthenticationError, ResourceNotRunningError

logger = logging.getLogger(__name__)

DEFAULT_API_PORT = 8006


def build_websocket_url(server: str, node: str, resource_path: str, port: int, ticket: str) -> str:
    """Build the ``vncwebsocket`` URL for a termproxy port and ticket.

    Example::

        build_websocket_url("https://pve1:8006", "pve1", "qemu/100", 5900, "PVEVNC:abc")
        # wss://pve1:8006/api2/json/nodes/pve1/qemu/100/vncwebsocket?port=5900&vncticket=PVEVNC%3Aabc
    """
    parts = urlsplit(server)
    scheme = "wss" if parts.scheme == "https" else "ws"
    ws_port = parts.port or DEFAULT_API_PORT
    query = urlencode({"port": port, "vncticket": ticket})
    return (
        f"{scheme}://{parts.hostname}:{ws_port}"
        f"/api2/json/nodes/{node}/{resource_path}/vncwebsocket?{query}"
    )


def validate_resource_running(resource: Guest) -> None:
    if resource.is_running:
        return
    raise ResourceNotRunningError(
        f"Resource {resource.vmid} is not running (status: {resource.status})",
        vmid=resource.vmid,
        status=resource.status,
    )


class ConsoleService:
    """Runs a console session end-to-end.

    Login and termproxy go through the same session-authenticated
    client, so the termproxy ticket and the auth cookie belong to the
    same identity. A ticket obtained with an API token is bound to the
    token id and the WebSocket endpoint rejects it.
    """

    def __init__(
        self,
        console_config: ConsoleConfig | None = None,
        client_factory=ProxmoxClient,
        engine_factory=RelayEngine,
    ) -> None:
        self._config = console_config or ConsoleConfig()
        self._client_factory = client_factory
        self._engine_factory = engine_factory

    async def run(
        self,
        resource: Guest,
        resource_path: str,
        server: str,
        username: str,
        password: str,
        verify_tls: bool = True,
    ) -> SessionStatus:
        """Open a console to ``resource`` and relay until it closes.

        Raises:
            ResourceNotRunningError: The guest is not running. No request is made.
            AuthenticationError: Login or termproxy was rejected.
            ConsoleConnectionError: The API or WebSocket could not be reached.
            ProtocolError: The termproxy handshake went wrong.
        """
        validate_resource_running(resource)

        async with self._client_factory(server, verify_tls=verify_tls, timeout=self._config.api_timeout) as api:
            try:
                auth = await api.authenticate(username, password)
            except ProxmoxApiError as e:
                raise AuthenticationError(f"Authentication failed: {e}") from e
            try:
                proxy = await api.termproxy(resource.node, resource_path, auth)
            except ProxmoxApiError as e:
                raise AuthenticationError(f"Termproxy failed: {e}") from e

        descriptor = SessionDescriptor(
            endpoint_url=build_websocket_url(server, resource.node, resource_path, proxy.port, proxy.ticket),
            auth_cookie=auth.cookie,
            username=proxy.user,
            session_ticket=proxy.ticket,
            verify_tls=verify_tls,
        )
        logger.info("Opening console to %s on node %s", resource_path, resource.node)

        engine = self._engine_factory(
            descriptor,
            ping_interval=self._config.ping_interval,
            read_chunk_size=self._config.read_chunk_size,
            handshake_timeout=self._config.handshake_timeout,
            open_timeout=self._config.open_timeout,
            wake_prompt=self._config.wake_prompt,
        )
        return await engine.run()
