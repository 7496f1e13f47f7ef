"""
Error taxonomy for pocket-ssh sessions.

Every error carries an ErrorContext so it can be written to structured
event logs without string parsing.

Error hierarchy:
- SSHError (base)
  - SSHConnectionError
    - ConnectionFailed
      - ConnectionRefused
      - ConnectionTimeout
      - HostUnreachable
    - ChannelCreationFailed
    - PtyRequestFailed
    - ShellRequestFailed
    - SessionDisconnected
  - AuthenticationError
    - AuthenticationFailed
    - CredentialStoreError
    - InvalidKey
      - InvalidFormat
      - InvalidBase64
      - UnsupportedKeyType
      - InvalidKeyData
      - EncryptedKeyUnsupported
  - HostKeyError
    - HostKeyVerificationFailed
    - HostKeyRejected
      - HostKeyChanged
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class DisconnectReason(str, Enum):
    """
    Reasons for a session ending.

    Recorded in DISCONNECT events.
    """
    NORMAL = "normal"
    REMOTE_CLOSED = "remote_closed"
    NETWORK_ERROR = "network_error"
    KEEPALIVE_TIMEOUT = "keepalive_timeout"


@dataclass
class ErrorContext:
    """Structured context attached to every SSHError."""
    host: str | None = None
    port: int | None = None
    username: str | None = None
    auth_method: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values and flattening extra."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                collisions = ({f.name for f in fields(self)} - {"extra"}) & value.keys()
                assert not collisions, (
                    f"Extra keys collide with context field names: {collisions}"
                )
                result.update(value)
            else:
                result[key] = value
        return result


class SSHError(Exception):
    """
    Base exception for all pocket-ssh errors.

    The message is the human-readable reason shown to the user and
    recorded as the Failed state's reason.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"SSHError message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Class name, as recorded in ERROR events."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Flatten into event data: type, message and the non-empty context fields."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Connection and channel errors
# ---------------------------------------------------------------------------

class SSHConnectionError(SSHError):
    """Base class for transport and channel failures."""
    pass


class ConnectionFailed(SSHConnectionError):
    """The transport could not be established or was lost."""
    pass


class ConnectionRefused(ConnectionFailed):
    """Server actively refused the TCP connection."""
    pass


class ConnectionTimeout(ConnectionFailed):
    """TCP connect or SSH handshake did not finish in time."""
    pass


class HostUnreachable(ConnectionFailed):
    """Host could not be resolved or reached."""
    pass


class ChannelCreationFailed(SSHConnectionError):
    """The server refused to open a session channel."""
    pass


class PtyRequestFailed(SSHConnectionError):
    """The server refused the pseudo-terminal request."""
    pass


class ShellRequestFailed(SSHConnectionError):
    """The server refused the shell request."""
    pass


class SessionDisconnected(SSHConnectionError):
    """The session ended while it was connected or connecting."""
    pass


# ---------------------------------------------------------------------------
# Authentication and key errors
# ---------------------------------------------------------------------------

class AuthenticationError(SSHError):
    """Credential problems, local or reported by the server."""
    pass


class AuthenticationFailed(AuthenticationError):
    """
    Authentication did not succeed.

    This is raised when:
    - The required secret (password or key) is missing or empty
    - The server rejected the single offered credential
    - The server offered no method matching the credential kind
    """
    pass


class CredentialStoreError(AuthenticationError):
    """The secured credential store could not be read or written."""
    pass


class InvalidKey(AuthenticationError):
    """
    A private key blob could not be turned into a signing key.

    Subclasses name the exact parse failure; `reason` is copied into the
    context so event logs carry it.
    """

    default_message = "Invalid key"

    def __init__(
        self,
        message: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if reason:
            context.extra["reason"] = reason
        super().__init__(message or self.default_message, context)


class InvalidFormat(InvalidKey):
    """Not decodable text or not PEM framed."""
    default_message = "Invalid key format"


class InvalidBase64(InvalidKey):
    """PEM body is not valid base64."""
    default_message = "Invalid base64 encoding"


class UnsupportedKeyType(InvalidKey):
    """Key algorithm is not one we can sign with."""
    default_message = "Unsupported key type. Supported: Ed25519, ECDSA P-256/P-384/P-521, RSA"


class InvalidKeyData(InvalidKey):
    """Decodable container, but no plausible key material inside."""
    default_message = "Invalid key data"


class EncryptedKeyUnsupported(InvalidKey):
    """Passphrase-protected keys are rejected before any decrypt attempt."""
    default_message = "Encrypted keys are not supported"


# ---------------------------------------------------------------------------
# Host key errors
# ---------------------------------------------------------------------------

class HostKeyError(SSHError):
    """Base class for host identity verification errors."""
    pass


class HostKeyVerificationFailed(HostKeyError):
    """No trust decision could be reached for the offered host key."""
    pass


class HostKeyRejected(HostKeyError):
    """The user declined to trust the offered host key."""

    def __init__(
        self,
        message: str,
        fingerprint: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if fingerprint:
            context.extra["fingerprint"] = fingerprint
        super().__init__(message, context)
        self.fingerprint = fingerprint


class HostKeyChanged(HostKeyRejected):
    """
    A host presented a key different from the trusted one and the change
    was rejected.

    This could indicate a man-in-the-middle attack or a reinstalled server.
    """

    def __init__(
        self,
        message: str,
        old_fingerprint: str,
        new_fingerprint: str,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["old_fingerprint"] = old_fingerprint
        super().__init__(message, fingerprint=new_fingerprint, context=context)
        self.old_fingerprint = old_fingerprint
        self.new_fingerprint = new_fingerprint
