"""
Credentials and the secured key-value store they come from.

A Credential is either a PasswordCredential or a KeyCredential. Both hold
their secrets in SecureString so they never leak through repr() or logs,
and both can be discarded once the authentication offer has been built.

CredentialStore is the storage boundary: get/put/delete of opaque string
keys. KeyringCredentialStore puts that boundary on the OS keychain via
the keyring library; MemoryCredentialStore backs tests and
non-persistent use. CredentialSource resolves what a profile needs for a
connection attempt.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Union

import keyring
import keyring.errors
from keyring.backend import KeyringBackend

from pocket_ssh.errors import CredentialStoreError, ErrorContext
from pocket_ssh.models import AuthMethod, ServerProfile
from pocket_ssh.secure_string import SecureString

logger = logging.getLogger(__name__)

DEFAULT_KEYRING_SERVICE = "pocket-ssh"


def _secure(value: str | bytes | SecureString) -> SecureString:
    if isinstance(value, SecureString):
        return value
    return SecureString(value)


@dataclass
class PasswordCredential:
    """A login password."""
    password: SecureString

    def __post_init__(self) -> None:
        self.password = _secure(self.password)

    @property
    def is_empty(self) -> bool:
        return self.password.is_eradicated or len(self.password) == 0

    def discard(self) -> None:
        self.password.eradicate()


@dataclass
class KeyCredential:
    """
    A private key blob plus optional passphrase.

    The passphrase only reaches the key parser, never the wire.
    """
    private_key: SecureString
    passphrase: SecureString | None = None

    def __post_init__(self) -> None:
        self.private_key = _secure(self.private_key)
        if self.passphrase is not None:
            self.passphrase = _secure(self.passphrase)

    @property
    def is_empty(self) -> bool:
        return self.private_key.is_eradicated or len(self.private_key) == 0

    def discard(self) -> None:
        self.private_key.eradicate()
        if self.passphrase is not None:
            self.passphrase.eradicate()


Credential = Union[PasswordCredential, KeyCredential]


class CredentialStore:
    """
    Secured key-value storage for secrets.

    Keys are opaque strings, one per profile and credential kind.
    """

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def put(self, key: str, secret: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove a secret; deleting an absent key is a no-op."""
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    """Process-local store, used in tests and for one-off sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._secrets.get(key)

    def put(self, key: str, secret: str) -> None:
        with self._lock:
            self._secrets[key] = secret

    def delete(self, key: str) -> None:
        with self._lock:
            self._secrets.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._secrets


class KeyringCredentialStore(CredentialStore):
    """
    Store secrets in the OS keychain through keyring.

    Each key is stored as a keyring "username" under one service name.
    """

    def __init__(
        self,
        service: str = DEFAULT_KEYRING_SERVICE,
        backend: KeyringBackend | None = None,
    ) -> None:
        assert service, "Keyring service name must be non-empty"
        self._service = service
        self._backend = backend

    @property
    def _keyring(self) -> KeyringBackend:
        return self._backend if self._backend is not None else keyring.get_keyring()

    def get(self, key: str) -> str | None:
        try:
            return self._keyring.get_password(self._service, key)
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(
                "Failed to load credentials", ErrorContext(original_error=str(e))
            ) from e

    def put(self, key: str, secret: str) -> None:
        try:
            self._keyring.set_password(self._service, key, secret)
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(
                "Failed to save credentials", ErrorContext(original_error=str(e))
            ) from e
        logger.debug("Stored secret %s in keyring service %s", key, self._service)

    def delete(self, key: str) -> None:
        try:
            self._keyring.delete_password(self._service, key)
        except keyring.errors.PasswordDeleteError:
            logger.debug("No keyring entry for %s, nothing to delete", key)
        except keyring.errors.KeyringError as e:
            raise CredentialStoreError(
                "Failed to delete credentials", ErrorContext(original_error=str(e))
            ) from e


class CredentialSource:
    """
    Resolve the credential a profile needs for one connection attempt.

    Usage:
        source = CredentialSource(KeyringCredentialStore())
        source.save_password(profile, "hunter2")
        credential = source.resolve(profile)
    """

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    @property
    def store(self) -> CredentialStore:
        return self._store

    def resolve(
        self,
        profile: ServerProfile,
        one_time_password: str | SecureString | None = None,
    ) -> Credential | None:
        """
        Return the profile's credential, or None if nothing is stored.

        A one-time password overrides whatever is stored. Empty stored
        values are returned as empty credentials so the session can reject
        them before opening a socket.
        """
        if one_time_password is not None:
            return PasswordCredential(_secure(one_time_password))

        if profile.auth_method == AuthMethod.PASSWORD:
            password = self._store.get(profile.password_key)
            if password is None:
                return None
            return PasswordCredential(SecureString(password))

        private_key = self._store.get(profile.private_key_key)
        if private_key is None:
            return None
        passphrase = self._store.get(profile.passphrase_key)
        return KeyCredential(
            SecureString(private_key),
            SecureString(passphrase) if passphrase else None,
        )

    def save_password(self, profile: ServerProfile, password: str) -> None:
        self._store.put(profile.password_key, password)

    def save_private_key(
        self,
        profile: ServerProfile,
        private_key: str | bytes,
        passphrase: str | None = None,
    ) -> None:
        if isinstance(private_key, bytes):
            private_key = private_key.decode("utf-8")
        self._store.put(profile.private_key_key, private_key)
        if passphrase:
            self._store.put(profile.passphrase_key, passphrase)
        else:
            self._store.delete(profile.passphrase_key)

    def delete_all(self, profile: ServerProfile) -> None:
        """Forget every secret stored for a profile."""
        for key in profile.credential_keys:
            self._store.delete(key)
