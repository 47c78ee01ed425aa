"""Logging setup for pveterm.

Log records go to stderr, which shares the screen with the remote console.
While the terminal is in raw mode a bare ``\\n`` only moves the cursor
down, so stderr lines are written with ``\\r\\n`` endings throughout.
"""

from __future__ import annotations

import logging
import sys

from pveterm.config.settings import LoggingConfig


class RawTerminalFormatter(logging.Formatter):
    """Formatter whose output is safe to print on a raw-mode terminal."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        return text.replace("\r\n", "\n").replace("\n", "\r\n")


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ``pveterm`` logger.

    Args:
        config: Logging configuration. If None, uses defaults
                (WARNING level, stderr output).
    """
    if config is None:
        config = LoggingConfig()

    logger = logging.getLogger("pveterm")
    logger.setLevel(getattr(logging, config.level.upper(), logging.WARNING))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(RawTerminalFormatter(config.format))
    stderr_handler.terminator = "\r\n"
    logger.addHandler(stderr_handler)

    # Files keep plain newlines
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(logging.Formatter(config.format))
        logger.addHandler(file_handler)

    logger.debug("Logging initialized at %s level", config.level)
