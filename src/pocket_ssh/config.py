"""
Session, keepalive and reconnection settings.

Settings are plain dataclasses validated on construction. They can be
built in code or loaded from an optional JSON file:

    {
        "session": {"term_type": "xterm-256color", "cols": 80, "rows": 24},
        "keepalive": {"interval_sec": 15, "max_count": 3},
        "reconnect": {"max_attempts": 3, "delay_sec": 2.0, "enabled": true}
    }

Setting "keepalive" to null disables keepalives.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
DEFAULT_TERM_TYPE = "xterm-256color"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
DEFAULT_CONNECT_TIMEOUT_SEC = 30.0
DEFAULT_RECONNECT_DELAY_SEC = 2.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 3
DEFAULT_HOST_KEY_DECISION_TIMEOUT_SEC = 120.0


@dataclass
class KeepaliveConfig:
    """
    SSH-level keepalive so a silently dead link is noticed.

    Default: 30s interval, 3 max count = 90s before the session is
    declared lost and the reconnect controller takes over.
    """
    interval_sec: float = 30.0
    max_count: int = 3

    def __post_init__(self) -> None:
        assert self.interval_sec > 0, \
            f"interval_sec must be positive, got {self.interval_sec}"
        assert self.max_count > 0, \
            f"max_count must be positive, got {self.max_count}"

    @property
    def total_timeout_sec(self) -> float:
        return self.interval_sec * self.max_count

    def to_asyncssh_options(self) -> dict[str, Any]:
        """Convert to asyncssh.connect() keyword arguments."""
        return {
            "keepalive_interval": self.interval_sec,
            "keepalive_count_max": self.max_count,
        }


@dataclass
class ReconnectPolicy:
    """
    Bounded automatic reconnection with a fixed delay between attempts.

    - max_attempts: Attempts after an unexpected disconnect before giving up
    - delay_sec: Wait before each attempt
    - enabled: False surfaces the first unexpected disconnect immediately
    """
    max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    delay_sec: float = DEFAULT_RECONNECT_DELAY_SEC
    enabled: bool = True

    def __post_init__(self) -> None:
        assert self.max_attempts >= 0, \
            f"max_attempts must be non-negative, got {self.max_attempts}"
        assert self.delay_sec >= 0, \
            f"delay_sec must be non-negative, got {self.delay_sec}"


@dataclass
class SessionConfig:
    """
    Per-session terminal and timing settings.

    host_key_decision_timeout_sec bounds how long a handshake waits for
    a trust decision on an unknown or changed host key; None waits
    indefinitely. connect_timeout_sec covers the TCP connect and the SSH
    handshake, excluding time spent waiting for that decision.
    """
    term_type: str = DEFAULT_TERM_TYPE
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    connect_timeout_sec: float = DEFAULT_CONNECT_TIMEOUT_SEC
    host_key_decision_timeout_sec: float | None = DEFAULT_HOST_KEY_DECISION_TIMEOUT_SEC
    keepalive: KeepaliveConfig | None = field(default_factory=KeepaliveConfig)

    def __post_init__(self) -> None:
        assert self.term_type, "term_type must be non-empty"
        assert self.cols > 0 and self.rows > 0, \
            f"Terminal geometry must be positive, got {self.cols}x{self.rows}"
        assert self.connect_timeout_sec > 0, \
            f"connect_timeout_sec must be positive, got {self.connect_timeout_sec}"
        if self.host_key_decision_timeout_sec is not None:
            assert self.host_key_decision_timeout_sec > 0, (
                "host_key_decision_timeout_sec must be positive, "
                f"got {self.host_key_decision_timeout_sec}"
            )


@dataclass
class ClientConfig:
    """Top-level settings shared by every session the client opens."""
    session: SessionConfig = field(default_factory=SessionConfig)
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientConfig":
        """
        Build a config from parsed JSON.

        Raises:
            ValueError: On unknown sections or keys
        """
        unknown = set(data) - {"session", "keepalive", "reconnect"}
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        session_kwargs = _section(data, "session", SessionConfig)
        session_kwargs.pop("keepalive", None)
        if "keepalive" in data:
            keepalive_data = data["keepalive"]
            session_kwargs["keepalive"] = (
                None if keepalive_data is None
                else KeepaliveConfig(**_section(data, "keepalive", KeepaliveConfig))
            )

        return cls(
            session=SessionConfig(**session_kwargs),
            reconnect=ReconnectPolicy(**_section(data, "reconnect", ReconnectPolicy)),
        )


def _section(data: dict[str, Any], name: str, target: type) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be an object")
    allowed = {f.name for f in fields(target)}
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
    return dict(section)


def load_config(path: Path | str | None) -> ClientConfig:
    """
    Load settings from a JSON file.

    A missing path or file yields the defaults.

    Raises:
        ValueError: If the file is not valid JSON or has unknown keys
    """
    if path is None:
        return ClientConfig()
    path = Path(path)
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return ClientConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    logger.debug("Loaded config from %s", path)
    return ClientConfig.from_dict(data)
