"""
AES-256-GCM codec for preference mappings.

This module provides:
- SecureKey: Encryption key holder with redacted repr
- EncryptedBlob: Nonce, tag and ciphertext of one encrypted mapping
- PreferenceCodec: Encode/decode preference mappings with a fixed key
- encode / decode: Functional forms taking the key per call

Blob wire format:
    base64(nonce) ":" base64(tag) ":" base64(ciphertext)

The plaintext is the canonical JSON encoding of the mapping (sorted keys,
compact separators). No additional authenticated data is used.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
from dataclasses import dataclass
from typing import Dict, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigError, FormatError, IntegrityError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
NONCE_SIZE: int = 12  # 96 bits (standard for AES-GCM)
TAG_SIZE: int = 16  # 128 bits (authentication tag)

BLOB_DELIMITER: str = ":"

PreferenceMapping = Dict[str, bool]


class SecureKey:
    """
    Holder for the preference encryption key.

    Loaded once from PREFERENCES_ENCRYPTION_KEY and shared by every codec.
    The bytes live in a bytearray that is overwritten when the holder is
    collected; CPython gives no timing guarantee for that.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        """
        Wrap raw key material.

        Length is not checked here; PreferenceCodec rejects anything but
        32 bytes.

        Args:
            key_bytes: Decoded key bytes

        Raises:
            ConfigError: If key_bytes is not bytes-like
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise ConfigError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Fresh random key, as printed by `preference-vault generate-key`."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    def as_bytes(self) -> bytes:
        """Key bytes for handing to AESGCM."""
        return bytes(self._bytes)

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        """Never show key material in logs or tracebacks."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Overwrite the key bytes."""
        if hasattr(self, "_bytes"):
            self._bytes[:] = bytes(len(self._bytes))


def _check_key(key: SecureKey) -> None:
    if len(key) != AES_256_KEY_SIZE:
        raise ConfigError(
            f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(key)}"
        )


def _b64_segment(segment: str, name: str) -> bytes:
    """Strictly decode one blob segment."""
    if not segment:
        raise FormatError(f"Empty {name} segment")
    try:
        raw = base64.b64decode(segment, validate=True)
    except (binascii.Error, ValueError):
        raise FormatError(f"Invalid base64 in {name} segment")
    # Reject non-canonical encodings (e.g. stray padding bits).
    if base64.b64encode(raw).decode("ascii") != segment:
        raise FormatError(f"Non-canonical base64 in {name} segment")
    return raw


@dataclass(frozen=True)
class EncryptedBlob:
    """
    At-rest representation of one preference mapping.

    Unlike the cryptography AESGCM output, the tag is kept as its own field
    so the serialized form carries nonce, tag and ciphertext separately.
    """

    nonce: bytes  # 12 bytes
    tag: bytes  # 16 bytes
    ciphertext: bytes

    def to_string(self) -> str:
        """Serialize as base64(nonce):base64(tag):base64(ciphertext)."""
        return BLOB_DELIMITER.join(
            base64.b64encode(part).decode("ascii")
            for part in (self.nonce, self.tag, self.ciphertext)
        )

    @classmethod
    def from_string(cls, blob: str) -> EncryptedBlob:
        """
        Parse the serialized blob form.

        Args:
            blob: Serialized blob string

        Returns:
            EncryptedBlob instance

        Raises:
            FormatError: If the delimiter structure, base64 or segment sizes
                are invalid
        """
        if not isinstance(blob, str):
            raise FormatError("Blob must be a string")

        segments = blob.split(BLOB_DELIMITER)
        if len(segments) != 3:
            raise FormatError(
                f"Invalid blob format: expected 3 segments, got {len(segments)}"
            )

        nonce = _b64_segment(segments[0], "nonce")
        tag = _b64_segment(segments[1], "tag")
        ciphertext = _b64_segment(segments[2], "ciphertext")

        if len(nonce) != NONCE_SIZE:
            raise FormatError(
                f"Invalid nonce size: expected {NONCE_SIZE}, got {len(nonce)}"
            )
        if len(tag) != TAG_SIZE:
            raise FormatError(f"Invalid tag size: expected {TAG_SIZE}, got {len(tag)}")

        return cls(nonce=nonce, tag=tag, ciphertext=ciphertext)


def serialize_preferences(mapping: Mapping[str, bool]) -> bytes:
    """Canonical byte form of a mapping (sorted keys, compact JSON)."""
    # ASCII escaping keeps lone surrogates encodable
    return json.dumps(dict(mapping), sort_keys=True, separators=(",", ":")).encode("ascii")


def deserialize_preferences(data: bytes) -> PreferenceMapping:
    """
    Inverse of serialize_preferences.

    Raises:
        FormatError: If data is not a JSON object of string -> bool
    """
    try:
        parsed = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise FormatError("Decrypted preferences are not valid JSON")

    if not isinstance(parsed, dict):
        raise FormatError("Decrypted preferences are not a JSON object")
    for value in parsed.values():
        if not isinstance(value, bool):
            raise FormatError("Decrypted preference values must be booleans")
    return parsed


class PreferenceCodec:
    """
    AES-256-GCM authenticated encryption of preference mappings.

    The key is bound at construction and validated there, so a wrong-length
    key surfaces as a ConfigError before any request is served.
    """

    def __init__(self, key: SecureKey) -> None:
        """
        Initialize codec.

        Args:
            key: 32-byte encryption key

        Raises:
            ConfigError: If key size is invalid
        """
        _check_key(key)
        self._aesgcm = AESGCM(key.as_bytes())

    def encrypt(self, mapping: Mapping[str, bool]) -> EncryptedBlob:
        """Encrypt a mapping with a fresh random nonce."""
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, serialize_preferences(mapping), None)
        # AESGCM appends the tag to the ciphertext
        return EncryptedBlob(
            nonce=nonce, tag=sealed[-TAG_SIZE:], ciphertext=sealed[:-TAG_SIZE]
        )

    def decrypt(self, blob: EncryptedBlob) -> PreferenceMapping:
        """
        Verify and decrypt a parsed blob.

        Raises:
            IntegrityError: If authentication fails
            FormatError: If the plaintext is not a valid mapping
        """
        try:
            plaintext = self._aesgcm.decrypt(blob.nonce, blob.ciphertext + blob.tag, None)
        except (InvalidTag, ValueError):
            # Generic error to prevent oracle attacks
            raise IntegrityError("Decryption failed")
        return deserialize_preferences(plaintext)

    def encode(self, mapping: Mapping[str, bool]) -> str:
        """Encrypt a mapping and return the serialized blob."""
        return self.encrypt(mapping).to_string()

    def decode(self, blob: str) -> PreferenceMapping:
        """
        Parse, verify and decrypt a serialized blob.

        Args:
            blob: Serialized blob string

        Returns:
            Decrypted preference mapping

        Raises:
            FormatError: If the blob or plaintext is malformed
            IntegrityError: If authentication fails
        """
        return self.decrypt(EncryptedBlob.from_string(blob))


def encode(mapping: Mapping[str, bool], key: SecureKey) -> str:
    """
    Encrypt a preference mapping.

    Args:
        mapping: Event type -> enabled flag
        key: 32-byte encryption key

    Returns:
        Serialized blob string

    Raises:
        ConfigError: If key size is invalid
    """
    return PreferenceCodec(key).encode(mapping)


def decode(blob: str, key: SecureKey) -> PreferenceMapping:
    """
    Decrypt a serialized blob produced by encode().

    Raises:
        ConfigError: If key size is invalid
        FormatError: If the blob or plaintext is malformed
        IntegrityError: If authentication fails
    """
    return PreferenceCodec(key).decode(blob)
