"""Proxmox VE REST API access used to set up console sessions."""

from pveterm.api.client import ProxmoxApiError, ProxmoxClient

__all__ = ["ProxmoxApiError", "ProxmoxClient"]
