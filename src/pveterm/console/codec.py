"""Encoder for the Proxmox termproxy (xterm.js) wire protocol.

After the one-off handshake line, every outbound message is a frame
whose first character selects its type:

    0:<bytelength>:<data>    input bytes for the remote terminal
    1:<cols>:<rows>:         terminal resize
    2                        keepalive ping

The remote side only ever sends raw terminal output, so decoding is the
identity on inbound bytes.
"""

from __future__ import annotations

from pveterm.domain.models import DataFrame, Frame, PingFrame, ResizeFrame

# Ctrl+] -- same escape byte as telnet
DISCONNECT_KEY = 0x1D

DATA_PREFIX = b"0:"
RESIZE_PREFIX = b"1:"
PING = b"2"


def encode_data(data: bytes | str) -> bytes:
    """Encode input bytes as a data frame.

    The length field is the raw byte count, so multi-byte UTF-8
    characters count as more than one.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return DATA_PREFIX + str(len(data)).encode("ascii") + b":" + data


def encode_resize(cols: int, rows: int) -> bytes:
    """Encode a terminal size change. The trailing colon is required."""
    if cols < 0 or rows < 0:
        raise ValueError(f"Terminal size must be non-negative, got {cols}x{rows}")
    return RESIZE_PREFIX + f"{cols}:{rows}:".encode("ascii")


def encode_ping() -> bytes:
    return PING


def encode_handshake(username: str, ticket: str) -> bytes:
    """Build the authentication line sent before any framed message."""
    return f"{username}:{ticket}\n".encode("utf-8")


def encode_frame(frame: Frame) -> bytes:
    """Encode any frame variant."""
    if isinstance(frame, DataFrame):
        return encode_data(frame.payload)
    if isinstance(frame, ResizeFrame):
        return encode_resize(frame.cols, frame.rows)
    if isinstance(frame, PingFrame):
        return encode_ping()
    raise TypeError(f"Unknown frame type: {type(frame).__name__}")


def is_disconnect_key(value: int | bytes) -> bool:
    """Return True only for the single escape byte 0x1D."""
    if isinstance(value, (bytes, bytearray)):
        return len(value) == 1 and value[0] == DISCONNECT_KEY
    return value == DISCONNECT_KEY


def split_at_disconnect(chunk: bytes) -> tuple[bytes, bool]:
    """Split a stdin chunk at the escape byte.

    Returns the bytes to forward and whether the escape byte was seen.
    Anything typed after the escape byte in the same chunk is dropped.
    """
    for index, byte in enumerate(chunk):
        if is_disconnect_key(byte):
            return chunk[:index], True
    return chunk, False


def decode_output(message: bytes | str) -> bytes:
    """Turn an inbound WebSocket message into bytes for the local terminal."""
    if isinstance(message, str):
        return message.encode("utf-8")
    return bytes(message)
