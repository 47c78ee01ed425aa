"""Command-line interface for pveterm.

Provides the ``console`` command, which opens an interactive terminal
to a VM or container. Press Ctrl-] to leave the session.
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import getpass
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from pveterm.api.client import ProxmoxApiError, ProxmoxClient
from pveterm.domain.models import Guest, GuestType
from pveterm.errors import (
    AuthenticationError,
    ConsoleConnectionError,
    ConsoleError,
    ResourceNotRunningError,
    SessionTerminatedError,
)

logger = logging.getLogger(__name__)


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    CONFIG_ERROR = 3
    CONNECTION_ERROR = 4
    NOT_FOUND = 5
    PERMISSION_DENIED = 6
    INTERRUPTED = 130


RESOURCE_TYPES = {
    "vm": GuestType.QEMU,
    "ct": GuestType.LXC,
    "container": GuestType.LXC,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pveterm",
        description="Interactive terminal console for Proxmox VE guests",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/pveterm.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    console_parser = subparsers.add_parser(
        "console", help="Open interactive terminal console to a VM or container",
    )
    console_parser.add_argument(
        "resource_type", choices=sorted(RESOURCE_TYPES),
        help="Kind of guest",
    )
    console_parser.add_argument("vmid", nargs="?", default=None, help="Guest identifier")
    console_parser.add_argument("-n", "--node", default=None, help="Only match guests on this node")
    console_parser.add_argument("--user", default=None, help="Username for session authentication")
    console_parser.add_argument("--password", default=None, help="Password for session authentication")

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


def prompt_username(default: str | None = None) -> str | None:
    """Ask for a username on stderr. Returns None when input is closed."""
    prompt = f"Username [{default}]: " if default else "Username: "
    sys.stderr.write(prompt)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        return None
    entered = line.strip()
    return entered or default


def prompt_password() -> str | None:
    try:
        password = getpass.getpass("Password: ", stream=sys.stderr)
    except EOFError:
        return None
    return password or None


def resolve_credentials(args: argparse.Namespace, settings) -> tuple[str | None, str | None]:
    """Pick credentials for the session.

    Priority: CLI flags > username+password pair from config > prompt.
    The prompt always asks for both so the user sees which account is used.
    """
    username = args.user
    password = args.password
    config_password = settings.password.get_secret_value()

    if username is None and password is None and settings.username and config_password:
        return settings.username, config_password

    if password is None:
        username = prompt_username(username or settings.default_username)
        if username is None:
            return None, None
        password = prompt_password()
    if not password:
        return None, None
    return username, password


def _describe(guest: Guest) -> str:
    kind = "VM" if guest.guest_type is GuestType.QEMU else "container"
    return f"{kind} {guest.vmid} ({guest.name or 'unnamed'}) on node {guest.node}"


async def _lookup_guest(settings, username: str, password: str, vmid: int, guest_type: GuestType, node: str | None) -> Guest | None:
    async with ProxmoxClient(
        settings.server,
        verify_tls=settings.verify_tls,
        timeout=settings.console.api_timeout,
    ) as api:
        try:
            auth = await api.authenticate(username, password)
        except ProxmoxApiError as e:
            raise AuthenticationError(f"Authentication failed: {e}") from e
        return await api.find_guest(auth, vmid, guest_type, node=node)


async def _console(settings, args: argparse.Namespace) -> int:
    """Resolve the target guest and run the console session."""
    from pveterm.services.console import ConsoleService

    if args.vmid is None:
        return _error("VMID is required", ExitCode.USAGE_ERROR)
    try:
        vmid = int(args.vmid)
    except ValueError:
        return _error(f"Invalid VMID: {args.vmid}", ExitCode.USAGE_ERROR)
    if not sys.stdin.isatty():
        return _error("Console requires an interactive terminal (TTY)", ExitCode.USAGE_ERROR)

    username, password = resolve_credentials(args, settings)
    if username is None or password is None:
        return ExitCode.GENERAL_ERROR

    guest_type = RESOURCE_TYPES[args.resource_type]
    try:
        guest = await _lookup_guest(settings, username, password, vmid, guest_type, args.node)
        if guest is None:
            kind = "VM" if guest_type is GuestType.QEMU else "Container"
            return _error(f"{kind} {vmid} not found", ExitCode.NOT_FOUND)

        print(f"Connecting to {_describe(guest)}...", file=sys.stderr)
        print("Escape character is '^]'.", file=sys.stderr)

        await ConsoleService(settings.console).run(
            resource=guest,
            resource_path=guest.resource_path,
            server=settings.server,
            username=username,
            password=password,
            verify_tls=settings.verify_tls,
        )
    except ResourceNotRunningError as e:
        return _error(str(e), ExitCode.GENERAL_ERROR)
    except AuthenticationError as e:
        return _error(str(e), ExitCode.PERMISSION_DENIED)
    except ConsoleConnectionError as e:
        return _error(f"Cannot connect to console: {e}", ExitCode.CONNECTION_ERROR)
    except SessionTerminatedError as e:
        print(f"\r\n{e}.", file=sys.stderr)
        # Shell convention for death by signal
        return 128 + e.signum
    except (ConsoleError, ProxmoxApiError) as e:
        return _error(str(e), ExitCode.GENERAL_ERROR)

    print("\r\nConnection closed.", file=sys.stderr)
    return ExitCode.SUCCESS


def _error(message: str, code: ExitCode) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return code


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the pveterm CLI."""
    args = parse_args(argv)

    if args.command is None:
        build_parser().print_help(sys.stderr)
        return ExitCode.USAGE_ERROR

    from pveterm.config.settings import load_settings
    from pveterm.utils.logging import setup_logging

    try:
        settings = load_settings(args.config)
    except (ValidationError, yaml.YAMLError, OSError) as e:
        return _error(f"Invalid configuration: {e}", ExitCode.CONFIG_ERROR)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "console":
        logger.info("Opening %s console for %s", args.resource_type, args.vmid)
        try:
            return asyncio.run(_console(settings, args))
        except KeyboardInterrupt:
            return ExitCode.INTERRUPTED

    return ExitCode.USAGE_ERROR


if __name__ == "__main__":
    sys.exit(main())
