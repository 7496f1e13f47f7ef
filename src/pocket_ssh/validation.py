"""
Input validation for connection targets.

Hostnames, usernames and ports come from user-edited profiles, so they are
checked for control characters, shell metacharacters and out-of-range
values before a Target is built. Every check raises ValueError.
"""
from __future__ import annotations

import ipaddress
import re
from typing import Final

MAX_HOSTNAME_LENGTH: Final[int] = 253
MAX_LABEL_LENGTH: Final[int] = 63
MAX_USERNAME_LENGTH: Final[int] = 64

# Control characters plus anything a shell would interpret
FORBIDDEN_CHARS: Final[frozenset[str]] = frozenset("\x00\n\r\t`$(){}[]|;&<>\\'\"")

_HOST_LABEL: Final[re.Pattern[str]] = re.compile(r"[a-zA-Z0-9]([a-zA-Z0-9_-]*[a-zA-Z0-9])?")

# POSIX-style names, plus dots for directory accounts like first.last
_LOGIN_NAME: Final[re.Pattern[str]] = re.compile(r"[a-zA-Z_][a-zA-Z0-9_.-]*")

_CONTROL_NAMES: Final[dict[str, str]] = {
    "\x00": "a null byte",
    "\n": "a newline",
    "\r": "a carriage return",
    "\t": "a tab",
}


def _require_text(value: object, what: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be text, not {type(value).__name__}")
    if not value:
        raise ValueError(f"{what} is empty")

    bad = next((c for c in value if c in FORBIDDEN_CHARS), None)
    if bad is not None:
        raise ValueError(f"{what} contains {_CONTROL_NAMES.get(bad, repr(bad))}")

    if len(value) > max_length:
        raise ValueError(
            f"{what} is {len(value)} characters, over the maximum length of {max_length}"
        )
    return value


def _is_ip_literal(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def validate_hostname(hostname: str) -> str:
    """
    Check a DNS name or IPv4/IPv6 literal.

    DNS names follow RFC 952/1123: dot-separated labels of letters, digits
    and inner hyphens, each at most 63 characters.

    Returns:
        The hostname unchanged. Case folding belongs to HostIdentity.
    """
    _require_text(hostname, "hostname", MAX_HOSTNAME_LENGTH)
    if _is_ip_literal(hostname):
        return hostname

    for label in hostname.split("."):
        if not label:
            raise ValueError(f"hostname {hostname!r} has an empty label")
        if len(label) > MAX_LABEL_LENGTH:
            raise ValueError(
                f"hostname label {label[:16]!r}... is over the maximum length of "
                f"{MAX_LABEL_LENGTH}"
            )
        if _HOST_LABEL.fullmatch(label) is None:
            if label[0] == "-" or label[-1] == "-":
                raise ValueError(f"hostname label {label!r} starts or ends with a hyphen")
            raise ValueError(
                f"hostname label {label!r} may only hold letters, digits and hyphens"
            )
    return hostname


def validate_username(username: str) -> str:
    """Check a login name; returns it unchanged."""
    _require_text(username, "username", MAX_USERNAME_LENGTH)
    if _LOGIN_NAME.fullmatch(username) is None:
        if not (username[0].isalpha() or username[0] == "_"):
            raise ValueError(
                f"username must begin with a letter or underscore, not {username[0]!r}"
            )
        raise ValueError(
            "username may only hold letters, digits, underscores, dots and hyphens"
        )
    return username


def validate_port(port: int) -> int:
    """Check a TCP port is an int in 1-65535; returns it unchanged."""
    # bool is a subclass of int
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, not {type(port).__name__}")
    if not 1 <= port <= 65535:
        raise ValueError(f"port {port} is outside 1-65535")
    return port
