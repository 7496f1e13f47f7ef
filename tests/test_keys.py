"""Tests for terminal key encodings."""
from __future__ import annotations

import pytest

from pocket_ssh.keys import TerminalKey, control_character, encode_text


class TestTerminalKey:
    @pytest.mark.parametrize("key,expected", [
        (TerminalKey.ESCAPE, b"\x1b"),
        (TerminalKey.TAB, b"\t"),
        (TerminalKey.UP, b"\x1b[A"),
        (TerminalKey.DOWN, b"\x1b[B"),
        (TerminalKey.RIGHT, b"\x1b[C"),
        (TerminalKey.LEFT, b"\x1b[D"),
        (TerminalKey.HOME, b"\x1b[H"),
        (TerminalKey.END, b"\x1b[F"),
        (TerminalKey.PAGE_UP, b"\x1b[5~"),
        (TerminalKey.PAGE_DOWN, b"\x1b[6~"),
    ])
    def test_sequences(self, key: TerminalKey, expected: bytes) -> None:
        assert key.sequence == expected


class TestControlCharacter:
    def test_ctrl_c(self) -> None:
        assert control_character("c") == b"\x03"
        assert control_character("C") == b"\x03"

    def test_range_ends(self) -> None:
        assert control_character("@") == b"\x00"
        assert control_character("_") == b"\x1f"
        assert control_character("[") == b"\x1b"

    @pytest.mark.parametrize("letter", ["", "ab", "1", "~", "é"])
    def test_invalid(self, letter: str) -> None:
        with pytest.raises(ValueError):
            control_character(letter)


class TestEncodeText:
    def test_utf8(self) -> None:
        assert encode_text("ls -l\r") == b"ls -l\r"
        assert encode_text("café") == "café".encode("utf-8")
