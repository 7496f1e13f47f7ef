"""
Byte sequences a terminal front end sends for special keys.
"""
from __future__ import annotations

from enum import Enum


class TerminalKey(Enum):
    """Keys without a printable character, mapped to VT100/xterm input bytes."""
    ESCAPE = b"\x1b"
    TAB = b"\t"
    ENTER = b"\r"
    BACKSPACE = b"\x7f"
    UP = b"\x1b[A"
    DOWN = b"\x1b[B"
    RIGHT = b"\x1b[C"
    LEFT = b"\x1b[D"
    HOME = b"\x1b[H"
    END = b"\x1b[F"
    PAGE_UP = b"\x1b[5~"
    PAGE_DOWN = b"\x1b[6~"

    @property
    def sequence(self) -> bytes:
        return self.value


def control_character(letter: str) -> bytes:
    """
    Ctrl+<letter> as a single control byte, e.g. "c" -> b"\\x03".

    Accepts A-Z in either case plus @ [ \\ ] ^ _.

    Raises:
        ValueError: For anything outside that range
    """
    if len(letter) != 1:
        raise ValueError(f"Expected a single character, got {letter!r}")
    code = ord(letter.upper())
    if not 0x40 <= code <= 0x5F:
        raise ValueError(f"No control character for {letter!r}")
    return bytes([code - 0x40])


def encode_text(text: str) -> bytes:
    return text.encode("utf-8")
