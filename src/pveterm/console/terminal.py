"""Local terminal mode control.

Puts the controlling terminal into raw mode for the duration of a
console session and restores the saved attributes afterwards.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import struct
import termios
import tty
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DEFAULT_SIZE = (80, 24)

# Saved termios attribute list, or None when the fd is not a TTY
ModeToken = list | None


class RawTerminal:
    """Raw-mode switch and size query for one terminal file descriptor."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    @property
    def fd(self) -> int:
        return self._fd

    def is_tty(self) -> bool:
        return os.isatty(self._fd)

    def enter_raw_mode(self) -> ModeToken:
        """Switch to raw mode and return the previous attributes."""
        if not self.is_tty():
            logger.debug("fd %d is not a TTY, leaving mode unchanged", self._fd)
            return None
        saved = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)
        logger.debug("Entered raw mode on fd %d", self._fd)
        return saved

    def restore_mode(self, token: ModeToken) -> None:
        """Restore attributes saved by :meth:`enter_raw_mode`."""
        if token is None:
            return
        termios.tcsetattr(self._fd, termios.TCSADRAIN, token)
        logger.debug("Restored terminal mode on fd %d", self._fd)

    @contextmanager
    def raw_mode(self) -> Iterator[ModeToken]:
        """Hold raw mode for the body of a ``with`` block."""
        token = self.enter_raw_mode()
        try:
            yield token
        finally:
            self.restore_mode(token)

    def size(self) -> tuple[int, int]:
        """Return ``(cols, rows)`` with an 80x24 fallback."""
        try:
            packed = fcntl.ioctl(self._fd, termios.TIOCGWINSZ, struct.pack("HHHH", 0, 0, 0, 0))
            rows, cols, _, _ = struct.unpack("HHHH", packed)
            if rows > 0 and cols > 0:
                return cols, rows
        except OSError:
            pass
        fallback = shutil.get_terminal_size(fallback=DEFAULT_SIZE)
        return fallback.columns, fallback.lines
