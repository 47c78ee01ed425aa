"""Tests for the termproxy wire protocol encoder."""

from __future__ import annotations

import pytest

from pveterm.console.codec import (
    DISCONNECT_KEY,
    decode_output,
    encode_data,
    encode_frame,
    encode_handshake,
    encode_ping,
    encode_resize,
    is_disconnect_key,
    split_at_disconnect,
)
from pveterm.domain.models import DataFrame, PingFrame, ResizeFrame


class TestEncodeData:
    def test_wraps_data(self) -> None:
        assert encode_data(b"hello") == b"0:5:hello"

    def test_multibyte_counts_bytes_not_characters(self) -> None:
        encoded = encode_data("é")  # é is 2 bytes in UTF-8
        assert encoded == b"0:2:\xc3\xa9"

    def test_empty_input(self) -> None:
        assert encode_data(b"") == b"0:0:"
        assert encode_data("") == b"0:0:"

    def test_binary_payload_is_untouched(self) -> None:
        payload = bytes(range(256))
        encoded = encode_data(payload)
        assert encoded.startswith(b"0:256:")
        assert encoded[len(b"0:256:"):] == payload

    def test_escape_sequences(self) -> None:
        # Arrow up as sent by a terminal in raw mode
        assert encode_data(b"\x1b[A") == b"0:3:\x1b[A"


class TestEncodeControlFrames:
    def test_resize(self) -> None:
        assert encode_resize(80, 24) == b"1:80:24:"

    @pytest.mark.parametrize("cols,rows", [(1, 1), (132, 43), (400, 120)])
    def test_resize_keeps_trailing_colon(self, cols: int, rows: int) -> None:
        assert encode_resize(cols, rows) == f"1:{cols}:{rows}:".encode()

    def test_resize_rejects_negative(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            encode_resize(-1, 24)

    def test_ping(self) -> None:
        assert encode_ping() == b"2"

    def test_handshake(self) -> None:
        assert encode_handshake("root@pam", "PVEVNC:abc123") == b"root@pam:PVEVNC:abc123\n"


class TestEncodeFrame:
    def test_dispatches_each_variant(self) -> None:
        assert encode_frame(DataFrame(payload=b"ls\r")) == b"0:3:ls\r"
        assert encode_frame(ResizeFrame(cols=100, rows=30)) == b"1:100:30:"
        assert encode_frame(PingFrame()) == b"2"

    def test_unknown_frame(self) -> None:
        with pytest.raises(TypeError):
            encode_frame("2")  # type: ignore[arg-type]


class TestDisconnectKey:
    def test_ctrl_close_bracket(self) -> None:
        assert DISCONNECT_KEY == 0x1D
        assert is_disconnect_key(0x1D)
        assert is_disconnect_key(b"\x1d")

    @pytest.mark.parametrize("value", [0x03, 0x0A, 0x0D, 0x1B, 0x1C, 0x1E, ord("a")])
    def test_other_bytes(self, value: int) -> None:
        assert not is_disconnect_key(value)
        assert not is_disconnect_key(bytes([value]))

    def test_every_other_byte_is_rejected(self) -> None:
        assert [b for b in range(256) if is_disconnect_key(b)] == [0x1D]

    def test_multibyte_chunk_is_not_a_key(self) -> None:
        assert not is_disconnect_key(b"\x1d\x1d")


class TestSplitAtDisconnect:
    def test_no_escape(self) -> None:
        assert split_at_disconnect(b"ls -la\r") == (b"ls -la\r", False)

    def test_escape_alone(self) -> None:
        assert split_at_disconnect(b"\x1d") == (b"", True)

    def test_prefix_is_kept_and_rest_dropped(self) -> None:
        assert split_at_disconnect(b"ab\x1dcd") == (b"ab", True)


class TestDecodeOutput:
    def test_bytes_pass_through(self) -> None:
        assert decode_output(b"\x1b[2Jroot@ct:~# ") == b"\x1b[2Jroot@ct:~# "

    def test_text_is_utf8_encoded(self) -> None:
        assert decode_output("café") == b"caf\xc3\xa9"
