"""
EchoMesh - Wire codec for encrypted room messages.

Wire format (ASCII, colon-delimited, standard base64 with padding):

    2 fields (default):   b64(nonce) : b64(ciphertext || tag)
    3 fields (hardened):  b64(nonce) : b64(ciphertext || tag) : b64(hmac)

The nonce is 24 random bytes for XChaCha20-Poly1305. The hardened variant
adds an HMAC-SHA256 over nonce || ciphertext, checked in constant time
before the AEAD tag. A codec is fixed to one cardinality and rejects the
other.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

from .constants import (
    INTEGRITY_TAG_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    WIRE_FIELDS_DEFAULT,
    WIRE_FIELDS_HARDENED,
    WIRE_SEPARATOR,
)
from .crypto import CryptoProvider, SessionKey
from .errors import AuthenticationError, ErrorCode, FormatError
from .replay import ReplayGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WireMessage:
    """A parsed wire message."""

    nonce: bytes
    sealed: bytes
    integrity: Optional[bytes] = None

    def encode(self) -> str:
        parts = [self.nonce, self.sealed]
        if self.integrity is not None:
            parts.append(self.integrity)
        return WIRE_SEPARATOR.join(base64.b64encode(p).decode("ascii") for p in parts)


def _b64decode(field: str, name: str) -> bytes:
    try:
        return base64.b64decode(field.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise FormatError(ErrorCode.E208_INVALID_FORMAT, f"Invalid base64 in {name} field") from e


class WireCodec:
    """Encrypts text into wire strings and back, under a room key.

    Attributes:
        provider: Initialized CryptoProvider
        fields: Accepted field count (2 or 3)
    """

    def __init__(self, provider: CryptoProvider, fields: int = WIRE_FIELDS_DEFAULT):
        if fields not in (WIRE_FIELDS_DEFAULT, WIRE_FIELDS_HARDENED):
            raise ValueError(f"Wire format must have 2 or 3 fields, not {fields}")

        self.provider = provider
        self.fields = fields

    @property
    def hardened(self) -> bool:
        return self.fields == WIRE_FIELDS_HARDENED

    def seal(self, plaintext: str, key: SessionKey) -> WireMessage:
        """Encrypt plaintext under key with a fresh random nonce.

        Raises:
            EncryptionError: If the AEAD operation fails
        """
        nonce = self.provider.random_nonce()
        sealed = self.provider.seal(key, nonce, plaintext.encode("utf-8"))

        integrity = None
        if self.hardened:
            integrity = self.provider.integrity_tag(key, nonce + sealed)

        return WireMessage(nonce, sealed, integrity)

    def encrypt(self, plaintext: str, key: SessionKey) -> str:
        """Encrypt plaintext and encode it as a wire string."""
        return self.seal(plaintext, key).encode()

    def parse(self, wire: str) -> WireMessage:
        """Split and decode a wire string without touching any key.

        Raises:
            FormatError: On wrong field count, bad base64 or bad lengths
        """
        if not isinstance(wire, str):
            raise FormatError(ErrorCode.E208_INVALID_FORMAT, "Wire message must be text")

        parts = wire.split(WIRE_SEPARATOR)
        if len(parts) != self.fields:
            raise FormatError(
                ErrorCode.E208_INVALID_FORMAT,
                f"Expected {self.fields} fields, got {len(parts)}",
            )

        nonce = _b64decode(parts[0], "nonce")
        if len(nonce) != NONCE_SIZE:
            raise FormatError(
                ErrorCode.E208_INVALID_FORMAT,
                f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}",
            )

        sealed = _b64decode(parts[1], "ciphertext")
        if len(sealed) < TAG_SIZE:
            raise FormatError(ErrorCode.E208_INVALID_FORMAT, "Ciphertext shorter than tag")

        integrity = None
        if self.hardened:
            integrity = _b64decode(parts[2], "integrity")
            if len(integrity) != INTEGRITY_TAG_SIZE:
                raise FormatError(ErrorCode.E208_INVALID_FORMAT, "Integrity tag has wrong length")

        return WireMessage(nonce, sealed, integrity)

    def open(self, message: WireMessage, key: SessionKey) -> str:
        """Authenticate and decrypt an already parsed message.

        Raises:
            AuthenticationError: On integrity or tag mismatch
            FormatError: If the plaintext is not valid UTF-8
        """
        if self.hardened:
            if message.integrity is None or not self.provider.verify_integrity(
                key, message.nonce + message.sealed, message.integrity
            ):
                raise AuthenticationError(
                    ErrorCode.E206_AUTHENTICATION_FAILED, "Integrity tag mismatch"
                )

        plaintext = self.provider.open(key, message.nonce, message.sealed)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError(ErrorCode.E208_INVALID_FORMAT, "Plaintext is not UTF-8") from e

    def decrypt(self, wire: str, key: SessionKey, guard: Optional[ReplayGuard] = None) -> str:
        """Parse, authenticate and decrypt a wire string.

        When a guard is given the nonce is recorded after authentication
        succeeds, so forged messages cannot fill the window.

        Raises:
            FormatError: On malformed input
            AuthenticationError: On tampering or the wrong key
            ReplayDetected: If the guard has already seen the nonce
        """
        message = self.parse(wire)
        plaintext = self.open(message, key)
        if guard is not None:
            guard.check_and_record(message.nonce)
        return plaintext
