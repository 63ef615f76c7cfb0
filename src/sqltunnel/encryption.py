"""Authenticated encryption of protocol payloads.

Wire layout of an encrypted blob (before base64):

    nonce (12 bytes) || tag (16 bytes) || ciphertext

The plaintext is the compact JSON encoding of the payload. AES-256-GCM
authenticates every message independently; there is no associated data.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def decode_key(raw: str | bytes | None) -> bytes:
    """Normalize a configured key to raw bytes.

    Keys may be stored raw or base64 encoded. A value that base64-decodes to
    exactly 32 bytes is treated as encoded; anything else is used as-is.
    Length is not checked here, see ``PayloadCipher``.
    """
    if raw is None:
        return b""
    if isinstance(raw, str):
        raw_bytes = raw.encode("utf-8")
    else:
        raw_bytes = raw

    try:
        decoded = base64.b64decode(raw_bytes, validate=True)
    except (binascii.Error, ValueError):
        return raw_bytes

    if len(decoded) == KEY_SIZE:
        return decoded
    return raw_bytes


def generate_key() -> str:
    """Generate a fresh base64 encoded 256-bit key."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


class PayloadCipher:
    """Encrypts and decrypts JSON-serializable values with AES-256-GCM."""

    def __init__(self, key: bytes):
        if not isinstance(key, bytes | bytearray) or len(key) != KEY_SIZE:
            raise EncryptionError("Encryption key must be exactly 32 bytes for AES-256.")
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_config(cls, raw_key: str | bytes | None) -> PayloadCipher:
        """Build a cipher from a raw or base64 encoded key."""
        return cls(decode_key(raw_key))

    def encrypt(self, value: Any) -> str:
        """Serialize, encrypt and base64 encode ``value``."""
        try:
            plaintext = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode(
                "utf-8"
            )
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Payload is not serializable: {e}") from e

        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, None)
        # AESGCM appends the tag; the wire format carries it before the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, payload: str | bytes) -> Any:
        """Reverse ``encrypt``; raises DecryptionError on any failure."""
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionError("Invalid encrypted payload.") from e

        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Invalid encrypted payload.")

        nonce = data[:NONCE_SIZE]
        tag = data[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
        ciphertext = data[NONCE_SIZE + TAG_SIZE :]

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Decryption failed.") from e

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError(f"Failed to decode decrypted data: {e}") from e
