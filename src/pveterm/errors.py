"""Error taxonomy for console sessions.

Every failure surfaced by :func:`pveterm.services.console.ConsoleService.run`
is one of these types, raised only after the local terminal has been
restored.
"""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for console session failures."""


class ResourceNotRunningError(ConsoleError):
    """Raised when the target guest is not in the running state."""

    def __init__(self, message: str, vmid: int | None = None, status: str = "") -> None:
        super().__init__(message)
        self.vmid = vmid
        self.status = status


class AuthenticationError(ConsoleError):
    """Raised when the ticket or credential exchange is rejected."""


class ConsoleConnectionError(ConsoleError):
    """Raised when the transport cannot be established or breaks mid-session."""


class ProtocolError(ConsoleError):
    """Raised when the termproxy peer sends something unexpected."""


class SessionTerminatedError(ConsoleError):
    """Raised when a termination signal ends the session."""

    def __init__(self, message: str, signum: int) -> None:
        super().__init__(message)
        self.signum = signum
