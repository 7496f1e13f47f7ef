"""
Host key trust store with trust-on-first-use semantics.

Provides:
- HostIdentity: normalised (lowercased host, port) lookup key
- HostKeyStatus / HostKeyVerdict: outcome of checking an offered key
- TrustStore: identity -> fingerprint mapping with verify/trust/forget
- KeyValueStorage, MemoryStorage, JSONFileStorage: persistence backends

The whole mapping lives under one storage key as a flat
{identity: fingerprint} object. It is loaded on first access and
rewritten wholesale on every mutation. One lock serialises every
read-modify-write, so sessions verifying different hosts at the same
time cannot lose each other's updates.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pocket_ssh.config import DEFAULT_PORT

logger = logging.getLogger(__name__)

TRUST_STORE_KEY = "pocket_ssh.known_hosts"
SHORT_FINGERPRINT_GROUPS = 8


def fingerprint(key_data: bytes) -> str:
    """
    SHA-256 over the public key blob, as colon-separated hex pairs.

    Args:
        key_data: SSH wire-format public key (asyncssh SSHKey.public_data)
    """
    assert isinstance(key_data, bytes) and key_data, \
        "Fingerprint requires non-empty key bytes"
    return ":".join(f"{b:02x}" for b in hashlib.sha256(key_data).digest())


def short_fingerprint(full: str) -> str:
    """First eight hex pairs, for compact display."""
    groups = full.split(":")
    if len(groups) <= SHORT_FINGERPRINT_GROUPS:
        return full
    return ":".join(groups[:SHORT_FINGERPRINT_GROUPS]) + "..."


@dataclass(frozen=True)
class HostIdentity:
    """
    A host as the trust store sees it.

    Hosts compare case-insensitively and port 22 is implicit, so
    "Example.com" and "example.com:22" are the same identity.
    """
    host: str
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        assert self.host, "HostIdentity host must be non-empty"
        assert 1 <= self.port <= 65535, f"Invalid port {self.port}"
        object.__setattr__(self, "host", self.host.lower())

    @property
    def key(self) -> str:
        if self.port == DEFAULT_PORT:
            return self.host
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.key


class HostKeyStatus(str, Enum):
    """Classification of an offered host key."""
    TRUSTED = "trusted"
    UNKNOWN = "unknown"
    CHANGED = "changed"


@dataclass(frozen=True)
class HostKeyVerdict:
    """
    Result of TrustStore.verify.

    fingerprint is always the offered key's fingerprint;
    previous_fingerprint is set only for CHANGED.
    """
    status: HostKeyStatus
    fingerprint: str
    previous_fingerprint: str | None = None

    def __post_init__(self) -> None:
        assert (self.status == HostKeyStatus.CHANGED) == (
            self.previous_fingerprint is not None
        ), "previous_fingerprint is set exactly for CHANGED verdicts"

    @property
    def is_trusted(self) -> bool:
        return self.status == HostKeyStatus.TRUSTED


# ---------------------------------------------------------------------------
# Persistence backends
# ---------------------------------------------------------------------------

class KeyValueStorage:
    """Persistence boundary: JSON-compatible values under string keys."""

    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    """Non-persistent storage, for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self.write_count = 0

    def get(self, key: str) -> Any | None:
        value = self._values.get(key)
        return json.loads(json.dumps(value)) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        self._values[key] = json.loads(json.dumps(value))
        self.write_count += 1


class JSONFileStorage(KeyValueStorage):
    """
    A JSON object file holding every storage key.

    Writes go to a temporary file in the same directory and are moved into
    place, so a crash never leaves a half-written store.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self._path} must contain a JSON object")
        return data

    def get(self, key: str) -> Any | None:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except BaseException:
            os.unlink(tmp_path)
            raise


# ---------------------------------------------------------------------------
# Trust store
# ---------------------------------------------------------------------------

class TrustStore:
    """
    Maps host identities to the fingerprint the user chose to trust.

    Usage:
        store = TrustStore(JSONFileStorage(get_trust_store_path()))
        identity = HostIdentity("example.com", 22)
        verdict = store.verify(identity, key.public_data)
        if verdict.status == HostKeyStatus.UNKNOWN and user_accepts(verdict):
            store.trust(identity, key.public_data)
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        storage_key: str = TRUST_STORE_KEY,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._storage_key = storage_key
        self._lock = threading.Lock()
        self._records: dict[str, str] | None = None

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    def _load(self) -> dict[str, str]:
        # Caller holds the lock
        if self._records is None:
            raw = self._storage.get(self._storage_key) or {}
            assert isinstance(raw, dict), \
                f"Trust store under {self._storage_key!r} must be a mapping"
            self._records = {str(k): str(v) for k, v in raw.items()}
            logger.debug("Loaded %d trusted host(s)", len(self._records))
        return self._records

    def _save(self, records: dict[str, str]) -> None:
        self._storage.set(self._storage_key, dict(records))

    def verify(self, identity: HostIdentity, key_data: bytes) -> HostKeyVerdict:
        """Classify an offered key as trusted, unknown or changed."""
        offered = fingerprint(key_data)
        with self._lock:
            stored = self._load().get(identity.key)

        if stored is None:
            return HostKeyVerdict(HostKeyStatus.UNKNOWN, offered)
        if stored == offered:
            return HostKeyVerdict(HostKeyStatus.TRUSTED, offered)
        return HostKeyVerdict(HostKeyStatus.CHANGED, offered, previous_fingerprint=stored)

    def trust(self, identity: HostIdentity, key_data: bytes) -> str:
        """
        Record a key as trusted for an identity, replacing any prior one.

        Returns:
            The stored fingerprint
        """
        offered = fingerprint(key_data)
        with self._lock:
            records = self._load()
            if records.get(identity.key) == offered:
                return offered
            previous = records.get(identity.key)
            records[identity.key] = offered
            self._save(records)

        if previous is None:
            logger.info("Trusted new host key for %s: %s", identity, offered)
        else:
            logger.warning(
                "Replaced trusted host key for %s: %s -> %s", identity, previous, offered
            )
        return offered

    def forget(self, identity: HostIdentity) -> bool:
        """
        Remove an identity's trusted key.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            records = self._load()
            if identity.key not in records:
                return False
            del records[identity.key]
            self._save(records)
        logger.info("Forgot host key for %s", identity)
        return True

    def stored_fingerprint(self, identity: HostIdentity) -> str | None:
        with self._lock:
            return self._load().get(identity.key)

    def load(self) -> int:
        """Read the backing storage now, if not yet read; returns the host count."""
        return len(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._load())


def format_changed_warning(
    identity: HostIdentity,
    old_fingerprint: str,
    new_fingerprint: str,
) -> str:
    """Multi-line warning for a host whose key no longer matches."""
    return "\n".join([
        "@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@",
        "@    WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!     @",
        "@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@@",
        "IT IS POSSIBLE THAT SOMEONE IS DOING SOMETHING NASTY!",
        f"The host key for {identity} has changed.",
        "",
        "Previously trusted fingerprint:",
        f"  {old_fingerprint}",
        "Offered fingerprint:",
        f"  {new_fingerprint}",
    ])
