"""Application services that tie the API client and the relay together."""

from pveterm.services.console import ConsoleService

__all__ = ["ConsoleService"]
