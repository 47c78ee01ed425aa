"""pveterm -- Interactive terminal console for Proxmox VE guests.

Opens a live terminal session to a running VM or container through the
Proxmox termproxy WebSocket and relays bytes between the local terminal
and the remote console until the user presses Ctrl-] or the remote side
hangs up.
"""

__version__ = "0.1.0"
