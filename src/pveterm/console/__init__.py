"""Interactive console relay for termproxy sessions.

Public API:
    RelayEngine -- Runs one session over a termproxy WebSocket
    RawTerminal -- Raw-mode switch for the local terminal
    codec -- Encoders for the termproxy wire protocol
"""

from pveterm.console.relay import RelayEngine
from pveterm.console.terminal import RawTerminal

__all__ = ["RawTerminal", "RelayEngine"]
