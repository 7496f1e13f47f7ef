"""
Single-shot authentication strategies.

An AuthStrategy is either PasswordAuth or KeyAuth. The transport asks it
for an offer each time the server requests credentials for a method; the
strategy answers at most once per connection attempt and then declines,
so a rejected credential fails the attempt instead of looping.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

import asyncssh

from pocket_ssh.credentials import Credential, KeyCredential, PasswordCredential
from pocket_ssh.errors import AuthenticationFailed, ErrorContext
from pocket_ssh.key_parser import ParsedKey, parse_private_key
from pocket_ssh.secure_string import SecureString

logger = logging.getLogger(__name__)

METHOD_PASSWORD = "password"
METHOD_PUBLICKEY = "publickey"


@dataclass
class PasswordAuth:
    """Offers a password once, and only for the password method."""
    password: SecureString
    attempted: bool = field(default=False, init=False)

    method = METHOD_PASSWORD

    def offer(self, method: str) -> str | None:
        if self.attempted:
            logger.debug("Password already offered, declining %s", method)
            return None
        self.attempted = True
        if method != self.method:
            logger.debug("Server requested %s, password credential declines", method)
            return None
        return self.password.reveal()


@dataclass
class KeyAuth:
    """Offers a parsed private key once, and only for public-key auth."""
    key: ParsedKey
    attempted: bool = field(default=False, init=False)

    method = METHOD_PUBLICKEY

    def offer(self, method: str) -> asyncssh.SSHKey | None:
        if self.attempted:
            logger.debug("Key already offered, declining %s", method)
            return None
        self.attempted = True
        if method != self.method:
            logger.debug("Server requested %s, key credential declines", method)
            return None
        return self.key.signing_key


AuthStrategy = Union[PasswordAuth, KeyAuth]


def build_auth_strategy(
    credential: Credential | None,
    context: ErrorContext | None = None,
) -> AuthStrategy:
    """
    Turn a credential into a strategy, before any network I/O.

    Raises:
        AuthenticationFailed: The credential is missing or empty
        InvalidKey: A key credential could not be parsed
    """
    if isinstance(credential, PasswordCredential):
        if credential.is_empty:
            raise AuthenticationFailed("No password configured", context)
        return PasswordAuth(credential.password)

    if isinstance(credential, KeyCredential):
        if credential.is_empty:
            raise AuthenticationFailed("No SSH key configured", context)
        passphrase = credential.passphrase.reveal() if credential.passphrase else None
        parsed = parse_private_key(credential.private_key.reveal_bytes(), passphrase)
        logger.debug("Parsed %s key for authentication", parsed.key_type.value)
        return KeyAuth(parsed)

    raise AuthenticationFailed("No credentials configured", context)
