"""Domain models for pveterm.

This package contains the data structures and enumerations shared by
the API client, the orchestrator and the relay. All models use
Pydantic v2 for validation.
"""

from pveterm.domain.models import (
    AuthTicket,
    DataFrame,
    Frame,
    Guest,
    GuestType,
    PingFrame,
    RelayState,
    ResizeFrame,
    SessionDescriptor,
    SessionState,
    SessionStatus,
    TermproxyTicket,
)

__all__ = [
    "AuthTicket",
    "DataFrame",
    "Frame",
    "Guest",
    "GuestType",
    "PingFrame",
    "RelayState",
    "ResizeFrame",
    "SessionDescriptor",
    "SessionState",
    "SessionStatus",
    "TermproxyTicket",
]
