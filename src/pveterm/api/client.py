"""Minimal async client for the Proxmox VE REST API.

Covers only what a console session needs: password login, opening a
termproxy and looking up a guest in the cluster resource list.
"""

from __future__ import annotations

import logging

import httpx

from pveterm.domain.models import AuthTicket, Guest, GuestType, TermproxyTicket
from pveterm.errors import ConsoleConnectionError

logger = logging.getLogger(__name__)

API_PREFIX = "/api2/json/"


class ProxmoxApiError(Exception):
    """Raised when the API rejects a request or answers with garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProxmoxClient:
    """Session-authenticated Proxmox API client.

    Usage::

        async with ProxmoxClient("https://pve1:8006", verify_tls=False) as api:
            auth = await api.authenticate("root@pam", "secret")
            proxy = await api.termproxy("pve1", "qemu/100", auth)
    """

    def __init__(
        self,
        server: str,
        verify_tls: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._server = server.rstrip("/")
        self._verify_tls = verify_tls
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._server + API_PREFIX

    async def open(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            verify=self._verify_tls,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def authenticate(self, username: str, password: str) -> AuthTicket:
        """Exchange a username and password for a session ticket."""
        data = await self._request(
            "POST", "access/ticket", data={"username": username, "password": password}
        )
        try:
            auth = AuthTicket(
                ticket=data["ticket"],
                csrf_token=data["CSRFPreventionToken"],
                username=data.get("username", username),
            )
        except (KeyError, TypeError) as e:
            raise ProxmoxApiError(f"Malformed ticket response: missing {e}") from e
        logger.info("Authenticated as %s", auth.username)
        return auth

    async def termproxy(self, node: str, resource_path: str, auth: AuthTicket) -> TermproxyTicket:
        """Start a termproxy for a guest and return its port and ticket."""
        data = await self._request(
            "POST",
            f"nodes/{node}/{resource_path}/termproxy",
            auth=auth,
            headers={"CSRFPreventionToken": auth.csrf_token},
        )
        try:
            proxy = TermproxyTicket(port=int(data["port"]), ticket=data["ticket"], user=data["user"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProxmoxApiError(f"Malformed termproxy response: {e}") from e
        logger.debug("Termproxy for %s on %s listening on port %d", resource_path, node, proxy.port)
        return proxy

    async def list_guests(self, auth: AuthTicket) -> list[Guest]:
        """List every VM and container in the cluster."""
        data = await self._request("GET", "cluster/resources", auth=auth, params={"type": "vm"})
        guests = []
        for entry in data or []:
            try:
                guest_type = GuestType(entry.get("type", "qemu"))
            except ValueError:
                continue
            guests.append(
                Guest(
                    vmid=int(entry["vmid"]),
                    node=entry["node"],
                    status=entry.get("status", "unknown"),
                    guest_type=guest_type,
                    name=entry.get("name"),
                )
            )
        return guests

    async def find_guest(
        self,
        auth: AuthTicket,
        vmid: int,
        guest_type: GuestType,
        node: str | None = None,
    ) -> Guest | None:
        """Return the guest with ``vmid`` of the given type, if any."""
        for guest in await self.list_guests(auth):
            if guest.vmid != vmid or guest.guest_type != guest_type:
                continue
            if node is not None and guest.node != node:
                continue
            return guest
        return None

    async def _request(
        self,
        method: str,
        path: str,
        auth: AuthTicket | None = None,
        headers: dict[str, str] | None = None,
        **kwargs,
    ):
        """Send a request and return the ``data`` member of the response."""
        if self._client is None:
            raise ProxmoxApiError("Client is not open")
        request_headers = dict(headers or {})
        if auth is not None:
            request_headers["Cookie"] = auth.cookie
        try:
            resp = await self._client.request(method, path, headers=request_headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProxmoxApiError(
                f"{method} {path} failed: HTTP {e.response.status_code} {e.response.reason_phrase}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            raise ConsoleConnectionError(f"Cannot reach {self._server}: {e}") from e
        try:
            return resp.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProxmoxApiError(f"{method} {path} returned an unexpected body") from e

    async def __aenter__(self) -> ProxmoxClient:
        await self.open()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.close()
