"""
Private key classification and decoding.

Supported inputs are unencrypted PEM blocks:
- OpenSSH ("OPENSSH PRIVATE KEY") with ed25519, ECDSA P-256/P-384/P-521
  or RSA keys
- PKCS#8 ("PRIVATE KEY"), SEC1 ("EC PRIVATE KEY") and PKCS#1
  ("RSA PRIVATE KEY")

Decoding order:
1. Anything carrying an "ENCRYPTED" marker, or an OpenSSH container with a
   cipher other than "none", fails fast with EncryptedKeyUnsupported.
2. A full structured decode via asyncssh.import_private_key.
3. Only if that fails: a marker scan over the decoded body for ed25519 and
   the P-curves. The scan takes windows of the algorithm's scalar size that
   are neither all-zero nor all-0xFF, prefers one whose derived public key
   is embedded in the blob, and otherwise settles for the first plausible
   window. RSA has no scan fallback.

The scan is a recovery path for damaged containers, and every use of it
is logged at WARNING.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Union

import asyncssh
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from pocket_ssh.errors import (
    EncryptedKeyUnsupported,
    InvalidBase64,
    InvalidFormat,
    InvalidKeyData,
    UnsupportedKeyType,
)

logger = logging.getLogger(__name__)


class KeyType(str, Enum):
    """Algorithm tag of a private key."""
    ED25519 = "ed25519"
    P256 = "p256"
    P384 = "p384"
    P521 = "p521"
    RSA = "rsa"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ParsedKey:
    """A decoded signing key and its algorithm tag."""
    key_type: KeyType
    signing_key: asyncssh.SSHKey

    @property
    def algorithm(self) -> str:
        return self.signing_key.algorithm.decode("ascii")

    @property
    def public_data(self) -> bytes:
        return self.signing_key.public_data


_PEM_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----",
    re.DOTALL,
)

_OPENSSH_BANNER = "OPENSSH PRIVATE KEY"
_OPENSSH_MAGIC = b"openssh-key-v1\x00"

# Algorithm names embedded in OpenSSH containers
_NAME_MARKERS: tuple[tuple[bytes, KeyType], ...] = (
    (b"ssh-ed25519", KeyType.ED25519),
    (b"ecdsa-sha2-nistp256", KeyType.P256),
    (b"ecdsa-sha2-nistp384", KeyType.P384),
    (b"ecdsa-sha2-nistp521", KeyType.P521),
    (b"ssh-rsa", KeyType.RSA),
)

# DER-encoded OIDs embedded in PKCS#8 and SEC1 structures
_OID_ED25519 = bytes.fromhex("06032b6570")
_OID_P256 = bytes.fromhex("06082a8648ce3d030107")
_OID_P384 = bytes.fromhex("06052b81040022")
_OID_P521 = bytes.fromhex("06052b81040023")
_OID_RSA = bytes.fromhex("06092a864886f70d010101")

_OID_MARKERS: tuple[tuple[bytes, KeyType], ...] = (
    (_OID_ED25519, KeyType.ED25519),
    (_OID_P256, KeyType.P256),
    (_OID_P384, KeyType.P384),
    (_OID_P521, KeyType.P521),
    (_OID_RSA, KeyType.RSA),
)

_KEY_TYPES_BY_ALGORITHM: dict[bytes, KeyType] = {
    b"ssh-ed25519": KeyType.ED25519,
    b"ecdsa-sha2-nistp256": KeyType.P256,
    b"ecdsa-sha2-nistp384": KeyType.P384,
    b"ecdsa-sha2-nistp521": KeyType.P521,
    b"ssh-rsa": KeyType.RSA,
}

# Scalar sizes and the markers the scan anchors on, per scannable type
_SCALAR_SIZES: dict[KeyType, int] = {
    KeyType.ED25519: 32,
    KeyType.P256: 32,
    KeyType.P384: 48,
    KeyType.P521: 66,
}

_SCAN_ANCHORS: dict[KeyType, tuple[bytes, ...]] = {
    KeyType.ED25519: (b"ssh-ed25519", _OID_ED25519),
    KeyType.P256: (b"nistp256", _OID_P256),
    KeyType.P384: (b"nistp384", _OID_P384),
    KeyType.P521: (b"nistp521", _OID_P521),
}

_CURVES: dict[KeyType, ec.EllipticCurve] = {
    KeyType.P256: ec.SECP256R1(),
    KeyType.P384: ec.SECP384R1(),
    KeyType.P521: ec.SECP521R1(),
}

_ScannedKey = Union[ed25519.Ed25519PrivateKey, ec.EllipticCurvePrivateKey]


def _as_text(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidFormat(reason="key is not UTF-8 text") from e


def _decode_body(block: re.Match[str]) -> bytes:
    """Base64-decode a PEM body, skipping RFC 1421 header lines."""
    lines = [
        line.strip()
        for line in block.group(2).splitlines()
        if line.strip() and ":" not in line
    ]
    try:
        return base64.b64decode("".join(lines), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidBase64(reason=str(e)) from e


def _earliest_marker(
    body: bytes,
    markers: tuple[tuple[bytes, KeyType], ...],
) -> KeyType:
    found = [
        (body.find(marker), key_type)
        for marker, key_type in markers
        if marker in body
    ]
    if not found:
        return KeyType.UNKNOWN
    return min(found)[1]


def detect_key_type(data: bytes | str) -> KeyType:
    """
    Classify a key blob from its banner and embedded algorithm markers.

    Never raises; anything unrecognisable is KeyType.UNKNOWN. The body
    does not have to be a valid key.
    """
    try:
        text = _as_text(data)
    except InvalidFormat:
        return KeyType.UNKNOWN

    block = _PEM_BLOCK.search(text)
    if block is None:
        return KeyType.UNKNOWN

    banner = block.group(1)
    if banner == "RSA PRIVATE KEY":
        return KeyType.RSA

    try:
        body = _decode_body(block)
    except InvalidBase64:
        body = b""

    markers = _NAME_MARKERS if banner == _OPENSSH_BANNER else _OID_MARKERS
    key_type = _earliest_marker(body, markers)
    if key_type is KeyType.UNKNOWN and banner == "EC PRIVATE KEY":
        # SEC1 keys written without curve parameters
        return KeyType.P256
    return key_type


def _openssh_cipher(body: bytes) -> bytes | None:
    """Return the cipher name of an OpenSSH container, None if not one."""
    if not body.startswith(_OPENSSH_MAGIC):
        return None
    offset = len(_OPENSSH_MAGIC)
    if len(body) < offset + 4:
        return None
    (length,) = struct.unpack(">I", body[offset:offset + 4])
    return body[offset + 4:offset + 4 + length]


def parse_private_key(
    data: bytes | str,
    passphrase: str | None = None,
) -> ParsedKey:
    """
    Decode a private key blob into a signing key.

    Args:
        data: PEM text of the key
        passphrase: Passed to the structured decoder only; encrypted keys
            are still rejected

    Raises:
        EncryptedKeyUnsupported: The key is passphrase protected
        InvalidFormat: Not text, or no PEM block
        InvalidBase64: PEM body is not base64
        UnsupportedKeyType: Unknown algorithm, or RSA the decoder rejected
        InvalidKeyData: No plausible key material was found
    """
    text = _as_text(data)
    if "ENCRYPTED" in text:
        raise EncryptedKeyUnsupported(reason="ENCRYPTED marker present")

    block = _PEM_BLOCK.search(text)
    if block is None:
        raise InvalidFormat(reason="no PEM block found")

    body = _decode_body(block)
    if not body:
        raise InvalidKeyData(reason="empty key body")

    cipher = _openssh_cipher(body)
    if cipher is not None and cipher != b"none":
        raise EncryptedKeyUnsupported(
            reason=f"OpenSSH cipher {cipher.decode('ascii', 'replace')}"
        )

    key_type = detect_key_type(text)
    if key_type is KeyType.UNKNOWN:
        raise UnsupportedKeyType(reason=f"unrecognised {block.group(1)} contents")

    parsed = _structured_decode(block.group(0), passphrase, key_type)
    if parsed is not None:
        return parsed

    return ParsedKey(key_type, _scan_for_key(body, key_type))


def _structured_decode(
    pem: str,
    passphrase: str | None,
    key_type: KeyType,
) -> ParsedKey | None:
    try:
        key = asyncssh.import_private_key(pem, passphrase)
    except (asyncssh.KeyImportError, ValueError) as e:
        logger.warning(
            "Structured decode of %s key failed (%s); falling back to marker scan",
            key_type.value, e,
        )
        return None

    actual = _KEY_TYPES_BY_ALGORITHM.get(key.algorithm)
    if actual is None:
        raise UnsupportedKeyType(reason=key.algorithm.decode("ascii", "replace"))
    return ParsedKey(actual, key)


def _is_plausible(window: bytes) -> bool:
    return window.strip(b"\x00") != b"" and window.strip(b"\xff") != b""


def _derive(window: bytes, key_type: KeyType) -> _ScannedKey | None:
    if key_type is KeyType.ED25519:
        return ed25519.Ed25519PrivateKey.from_private_bytes(window)
    try:
        return ec.derive_private_key(int.from_bytes(window, "big"), _CURVES[key_type])
    except ValueError:
        # Scalar outside the curve order
        return None


def _public_blob(private_key: _ScannedKey) -> bytes:
    public_key = private_key.public_key()
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
    return public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def _to_ssh_key(private_key: _ScannedKey) -> asyncssh.SSHKey:
    pem = private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return asyncssh.import_private_key(pem)


def _scan_for_key(body: bytes, key_type: KeyType) -> asyncssh.SSHKey:
    if key_type not in _SCALAR_SIZES:
        raise UnsupportedKeyType(
            reason=f"{key_type.value} keys need a structured decode"
        )

    anchor = -1
    for marker in _SCAN_ANCHORS[key_type]:
        position = body.find(marker)
        if position >= 0:
            anchor = position + len(marker)
            break
    if anchor < 0:
        raise InvalidKeyData(reason=f"no {key_type.value} marker in key body")

    size = _SCALAR_SIZES[key_type]
    first_plausible: _ScannedKey | None = None
    for offset in range(anchor, len(body) - size + 1):
        window = body[offset:offset + size]
        if not _is_plausible(window):
            continue
        candidate = _derive(window, key_type)
        if candidate is None:
            continue
        if _public_blob(candidate) in body:
            logger.warning(
                "Recovered %s key by marker scan at offset %d", key_type.value, offset
            )
            return _to_ssh_key(candidate)
        if first_plausible is None:
            first_plausible = candidate

    if first_plausible is None:
        raise InvalidKeyData(reason=f"no plausible {key_type.value} key material")

    logger.warning(
        "No scanned %s candidate matches an embedded public key; "
        "using the first plausible window",
        key_type.value,
    )
    return _to_ssh_key(first_plausible)
