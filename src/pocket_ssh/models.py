"""
Connection targets and saved server profiles.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pocket_ssh.config import DEFAULT_PORT
from pocket_ssh.validation import validate_hostname, validate_port, validate_username

CREDENTIAL_KEY_PREFIX = "pocket_ssh"


class AuthMethod(str, Enum):
    """How a profile authenticates."""
    PASSWORD = "password"
    SSH_KEY = "ssh_key"


@dataclass(frozen=True)
class Target:
    """
    Where to connect: host, port and login name.

    Immutable so a reconnect re-runs against exactly the same destination.
    """
    host: str
    username: str
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        validate_hostname(self.host)
        validate_username(self.username)
        validate_port(self.port)

    def __str__(self) -> str:
        if self.port == DEFAULT_PORT:
            return f"{self.username}@{self.host}"
        return f"{self.username}@{self.host}:{self.port}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ServerProfile:
    """
    A saved server entry.

    Profiles are owned by an external record store; this core only reads
    them to build a Target and writes back last_connected_at.
    """
    name: str
    host: str
    username: str
    port: int = DEFAULT_PORT
    auth_method: AuthMethod = AuthMethod.PASSWORD
    private_key_name: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)
    last_connected_at: datetime | None = None

    def __post_init__(self) -> None:
        assert self.name.strip(), "Profile name must be non-empty"
        self.auth_method = AuthMethod(self.auth_method)

    @property
    def password_key(self) -> str:
        return f"{CREDENTIAL_KEY_PREFIX}.password.{self.id}"

    @property
    def private_key_key(self) -> str:
        return f"{CREDENTIAL_KEY_PREFIX}.privatekey.{self.id}"

    @property
    def passphrase_key(self) -> str:
        return f"{CREDENTIAL_KEY_PREFIX}.passphrase.{self.id}"

    @property
    def credential_keys(self) -> tuple[str, str, str]:
        return (self.password_key, self.private_key_key, self.passphrase_key)

    @property
    def display_host(self) -> str:
        """user@host, with :port only when it is not 22."""
        if self.port == DEFAULT_PORT:
            return f"{self.username}@{self.host}"
        return f"{self.username}@{self.host}:{self.port}"

    def to_target(self) -> Target:
        return Target(host=self.host, username=self.username, port=self.port)

    def touch(self, when: datetime | None = None) -> None:
        """Record a successful connection."""
        self.last_connected_at = when or _now()
