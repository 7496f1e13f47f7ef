"""
Memory-controlled holder for passwords, passphrases and key blobs.

SecureString keeps the secret in a ctypes buffer rather than an immutable
Python str, never shows it in str()/repr(), and can be overwritten with
random bytes once the credential has been used.
"""
from __future__ import annotations

import ctypes
import hmac
import os
import warnings
from typing import Any


class SecureStringEradicated(Exception):
    """The secret was wiped and can no longer be read."""


class SecureString:
    """
    A secret held in ctypes-allocated memory.

    Usage:
        secret = SecureString(prompt_for_password())
        strategy = PasswordAuth(secret)
        ...
        secret.eradicate()

    The object passed to __init__ still lives in Python memory; keep it
    short-lived.
    """

    __slots__ = ("_buffer", "_length", "_eradicated")

    def __init__(self, value: str | bytes) -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        assert isinstance(value, bytes), f"Secrets are str or bytes, got {type(value).__name__}"
        self._length = len(value)
        self._eradicated = False
        self._buffer = (ctypes.c_char * self._length)()
        ctypes.memmove(self._buffer, value, self._length)

    def _check_eradicated(self) -> None:
        if self._eradicated:
            raise SecureStringEradicated("Secret was already wiped")

    def reveal(self) -> str:
        """
        Return the secret as text.

        Raises:
            SecureStringEradicated: If the secret has been eradicated
        """
        self._check_eradicated()
        return bytes(self._buffer).decode("utf-8")

    def reveal_bytes(self) -> bytes:
        """Return the secret as raw bytes."""
        self._check_eradicated()
        return bytes(self._buffer)

    def eradicate(self) -> None:
        """
        Overwrite the buffer with random bytes.

        Idempotent. After this every access raises SecureStringEradicated.
        """
        if not self._eradicated:
            ctypes.memmove(self._buffer, os.urandom(self._length), self._length)
            self._eradicated = True

    @property
    def is_eradicated(self) -> bool:
        return self._eradicated

    def __str__(self) -> str:
        return "<eradicated>" if self._eradicated else "<hidden>"

    def __repr__(self) -> str:
        return f"SecureString({self})"

    def __len__(self) -> int:
        self._check_eradicated()
        return self._length

    def __bool__(self) -> bool:
        self._check_eradicated()
        return self._length > 0

    def __hash__(self) -> int:
        self._check_eradicated()
        return hash((SecureString, self.reveal_bytes()))

    def __eq__(self, other: Any) -> bool:
        self._check_eradicated()
        if isinstance(other, SecureString):
            return hmac.compare_digest(self.reveal_bytes(), other.reveal_bytes())
        if isinstance(other, str):
            return hmac.compare_digest(self.reveal_bytes(), other.encode("utf-8"))
        if isinstance(other, bytes):
            return hmac.compare_digest(self.reveal_bytes(), other)
        return NotImplemented

    def __del__(self) -> None:
        try:
            self.eradicate()
        except Exception as e:
            warnings.warn(
                f"Could not wipe secret on collection: {e}",
                RuntimeWarning,
                stacklevel=1,
            )
