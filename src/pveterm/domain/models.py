"""Core domain models for the pveterm system.

These models represent the data flowing through a console session:
the target guest, the tickets issued by the Proxmox API, the immutable
session descriptor handed to the relay, and the wire frames it sends.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class GuestType(str, enum.Enum):
    """Kind of guest, matching the Proxmox API path segment."""

    QEMU = "qemu"
    LXC = "lxc"


class SessionState(str, enum.Enum):
    """Lifecycle of a relay session. Transitions only move forward."""

    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionStatus(str, enum.Enum):
    """How a relay session ended."""

    CLEAN_DISCONNECT = "clean_disconnect"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Proxmox resources and tickets
# ---------------------------------------------------------------------------


class Guest(BaseModel):
    """A VM or container as reported by the cluster resource listing."""

    model_config = ConfigDict(frozen=True)

    vmid: int = Field(gt=0, description="Guest identifier")
    node: str = Field(description="Node the guest currently lives on")
    status: str = Field(description="Power state, e.g. 'running' or 'stopped'")
    guest_type: GuestType = Field(default=GuestType.QEMU)
    name: str | None = Field(default=None)

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def resource_path(self) -> str:
        """API path segment for this guest, e.g. ``qemu/100``."""
        return f"{self.guest_type.value}/{self.vmid}"


class AuthTicket(BaseModel):
    """Session credentials returned by ``access/ticket``."""

    model_config = ConfigDict(frozen=True)

    ticket: str = Field(repr=False)
    csrf_token: str = Field(repr=False)
    username: str = Field(default="")

    @property
    def cookie(self) -> str:
        return f"PVEAuthCookie={self.ticket}"


class TermproxyTicket(BaseModel):
    """Port and one-shot ticket returned by a ``termproxy`` call."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(gt=0)
    ticket: str = Field(repr=False)
    user: str


class SessionDescriptor(BaseModel):
    """Everything the relay needs to open one console session.

    Built once by the orchestrator after credential resolution and
    never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    endpoint_url: str = Field(description="vncwebsocket URL including port and vncticket")
    auth_cookie: str = Field(repr=False, description="Cookie header value")
    username: str = Field(description="User the termproxy ticket was issued to")
    session_ticket: str = Field(repr=False, description="Termproxy ticket for the handshake")
    verify_tls: bool = Field(default=True)


class RelayState(BaseModel):
    """Mutable bookkeeping owned by a single relay engine."""

    open: bool = False
    last_ping_sent_at: datetime | None = None
    terminal_size: tuple[int, int] | None = None


# ---------------------------------------------------------------------------
# Wire frames (discriminated union)
# ---------------------------------------------------------------------------


class DataFrame(BaseModel):
    """Keystrokes or other input bytes for the remote terminal."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data"] = "data"
    payload: bytes = b""


class ResizeFrame(BaseModel):
    """New local terminal dimensions."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["resize"] = "resize"
    cols: int = Field(ge=0)
    rows: int = Field(ge=0)


class PingFrame(BaseModel):
    """Keepalive with no payload."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ping"] = "ping"


Frame = Annotated[
    Union[DataFrame, ResizeFrame, PingFrame],
    Field(discriminator="kind"),
]
