"""pocket-ssh: interactive SSH shell sessions with host key trust and auto-reconnect."""

__version__ = "0.1.0"

from pocket_ssh.auth import AuthStrategy, KeyAuth, PasswordAuth, build_auth_strategy
from pocket_ssh.client import (
    ClientCallbacks,
    ClientServices,
    TerminalClient,
    create_services,
)
from pocket_ssh.config import (
    ClientConfig,
    KeepaliveConfig,
    ReconnectPolicy,
    SessionConfig,
    load_config,
)
from pocket_ssh.credentials import (
    Credential,
    CredentialSource,
    CredentialStore,
    KeyCredential,
    KeyringCredentialStore,
    MemoryCredentialStore,
    PasswordCredential,
)
from pocket_ssh.errors import (
    AuthenticationError,
    AuthenticationFailed,
    ChannelCreationFailed,
    ConnectionFailed,
    ConnectionRefused,
    ConnectionTimeout,
    CredentialStoreError,
    DisconnectReason,
    EncryptedKeyUnsupported,
    ErrorContext,
    HostKeyChanged,
    HostKeyError,
    HostKeyRejected,
    HostKeyVerificationFailed,
    HostUnreachable,
    InvalidBase64,
    InvalidFormat,
    InvalidKey,
    InvalidKeyData,
    PtyRequestFailed,
    SessionDisconnected,
    ShellRequestFailed,
    SSHConnectionError,
    SSHError,
    UnsupportedKeyType,
)
from pocket_ssh.events import Event, EventCollector, EventEmitter, EventType
from pocket_ssh.host_key import (
    HostIdentity,
    HostKeyStatus,
    HostKeyVerdict,
    JSONFileStorage,
    KeyValueStorage,
    MemoryStorage,
    TrustStore,
    fingerprint,
    short_fingerprint,
)
from pocket_ssh.key_parser import KeyType, ParsedKey, detect_key_type, parse_private_key
from pocket_ssh.keys import TerminalKey, control_character, encode_text
from pocket_ssh.models import AuthMethod, ServerProfile, Target
from pocket_ssh.prompt import HostKeyPrompt, HostKeyPromptBridge
from pocket_ssh.reconnect import ReconnectContext, ReconnectController
from pocket_ssh.secure_string import SecureString, SecureStringEradicated
from pocket_ssh.session import ConnectionState, TransportSession

__all__ = [
    # Models and settings
    "AuthMethod",
    "ClientConfig",
    "KeepaliveConfig",
    "ReconnectPolicy",
    "ServerProfile",
    "SessionConfig",
    "Target",
    "load_config",
    # Credentials and auth
    "AuthStrategy",
    "Credential",
    "CredentialSource",
    "CredentialStore",
    "KeyAuth",
    "KeyCredential",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "PasswordAuth",
    "PasswordCredential",
    "SecureString",
    "SecureStringEradicated",
    "build_auth_strategy",
    # Key parsing
    "KeyType",
    "ParsedKey",
    "detect_key_type",
    "parse_private_key",
    # Host keys
    "HostIdentity",
    "HostKeyPrompt",
    "HostKeyPromptBridge",
    "HostKeyStatus",
    "HostKeyVerdict",
    "JSONFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "TrustStore",
    "fingerprint",
    "short_fingerprint",
    # Sessions
    "ClientCallbacks",
    "ClientServices",
    "ConnectionState",
    "ReconnectContext",
    "ReconnectController",
    "TerminalClient",
    "TerminalKey",
    "TransportSession",
    "control_character",
    "create_services",
    "encode_text",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Errors
    "AuthenticationError",
    "AuthenticationFailed",
    "ChannelCreationFailed",
    "ConnectionFailed",
    "ConnectionRefused",
    "ConnectionTimeout",
    "CredentialStoreError",
    "DisconnectReason",
    "EncryptedKeyUnsupported",
    "ErrorContext",
    "HostKeyChanged",
    "HostKeyError",
    "HostKeyRejected",
    "HostKeyVerificationFailed",
    "HostUnreachable",
    "InvalidBase64",
    "InvalidFormat",
    "InvalidKey",
    "InvalidKeyData",
    "PtyRequestFailed",
    "SessionDisconnected",
    "ShellRequestFailed",
    "SSHConnectionError",
    "SSHError",
    "UnsupportedKeyType",
]
