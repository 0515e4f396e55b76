"""
EchoMesh - Room key derivation and cryptographic primitives.

This module turns a (room id, password) pair into the symmetric key every
member of a room shares, without any handshake:

- Salt: first 16 bytes of SHA-256(room id), so peers agree on it for free
- Key: Argon2id(password, salt), 3 iterations, 64 MB, 32-byte output
- Optional second stage: an X25519 scalar multiplication over a scalar
  derived from room id and password, hashed together with the Argon2 key

The second stage derives both "private" scalars from the same password
material. It is extra key stretching, not a key exchange, and provides no
forward secrecy.

Every primitive is reached through a CryptoProvider obtained from
initialize(). A provider that was never initialized refuses to operate.

All cryptographic operations use well-tested, open-source libraries:
- PyNaCl / libsodium (Apache 2.0 / ISC License)
- cryptography library (Apache 2.0/BSD License)
- argon2-cffi (MIT License)
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Optional

import nacl.bindings
import nacl.exceptions
import nacl.utils
from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    FINGERPRINT_LENGTH,
    KEY_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    WIRE_INTEGRITY_INFO,
)
from .errors import (
    AuthenticationError,
    CryptoInitializationError,
    EncryptionError,
    ErrorCode,
    KeyDerivationError,
)

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters.

    Both peers of a room must use identical parameters, otherwise they
    derive different keys and every message fails authentication.
    """

    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    parallelism: int = ARGON2_PARALLELISM
    combine_shared_value: bool = False

    @classmethod
    def from_config(cls, config: "Config") -> "KdfParams":
        return cls(
            time_cost=int(config.get("crypto", "argon2_time_cost", ARGON2_TIME_COST)),
            memory_cost=int(config.get("crypto", "argon2_memory_cost", ARGON2_MEMORY_COST)),
            parallelism=int(config.get("crypto", "argon2_parallelism", ARGON2_PARALLELISM)),
            combine_shared_value=bool(config.get("crypto", "combine_shared_value", False)),
        )


@dataclass(frozen=True)
class SessionKey:
    """A 32-byte room key together with the epoch it was issued for.

    Held in memory only. The key bytes are excluded from repr().
    """

    material: bytes = field(repr=False)
    epoch: int = 0

    def __post_init__(self):
        if len(self.material) != KEY_SIZE:
            raise KeyDerivationError(
                ErrorCode.E203_KEY_DERIVATION_FAILED,
                f"Session key must be {KEY_SIZE} bytes, got {len(self.material)}",
            )

    def __len__(self) -> int:
        return len(self.material)

    def with_epoch(self, epoch: int) -> "SessionKey":
        """Return the same key material bound to a new epoch."""
        return replace(self, epoch=epoch)

    def fingerprint(self) -> str:
        """Short SHA-256 digest of the key for out-of-band comparison.

        Two peers showing the same fingerprint hold the same key.
        """
        digest = hashes.Hash(hashes.SHA256())
        digest.update(self.material)
        return digest.finalize().hex()[:FINGERPRINT_LENGTH]


def room_salt(room_id: str) -> bytes:
    """Salt for a room: the first SALT_SIZE bytes of SHA-256(room id)."""
    return hashlib.sha256(room_id.encode("utf-8")).digest()[:SALT_SIZE]


class CryptoProvider:
    """Capability handle for all cryptographic operations.

    Obtain one through initialize(). Every method checks readiness first
    and raises CryptoInitializationError otherwise.
    """

    def __init__(self, params: Optional[KdfParams] = None):
        self.params = params or KdfParams()
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def initialize(self) -> "CryptoProvider":
        """Initialize libsodium and run a probe encryption.

        Raises:
            CryptoInitializationError: If the primitives are unusable
        """
        if self._ready:
            return self

        try:
            nacl.bindings.sodium_init()
            probe_key = nacl.utils.random(KEY_SIZE)
            probe_nonce = nacl.utils.random(NONCE_SIZE)
            sealed = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
                b"probe", None, probe_nonce, probe_key
            )
            opened = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                sealed, None, probe_nonce, probe_key
            )
        except Exception as e:
            raise CryptoInitializationError(
                ErrorCode.E202_INITIALIZATION_FAILED,
                f"Cryptographic self-test failed: {e}",
            ) from e

        if opened != b"probe" or len(sealed) != len(b"probe") + TAG_SIZE:
            raise CryptoInitializationError(
                ErrorCode.E202_INITIALIZATION_FAILED, "Cryptographic self-test mismatch"
            )

        self._ready = True
        logger.debug(
            "Crypto provider ready (argon2id t=%d m=%d p=%d, combine=%s)",
            self.params.time_cost,
            self.params.memory_cost,
            self.params.parallelism,
            self.params.combine_shared_value,
        )
        return self

    def _ensure_ready(self) -> None:
        if not self._ready:
            raise CryptoInitializationError(
                ErrorCode.E201_NOT_INITIALIZED,
                "Cryptographic operation attempted before initialize()",
            )

    def derive_key(self, password: str, room_id: str) -> SessionKey:
        """
        Derive the room key from a password and room id using Argon2id.

        Deterministic: identical inputs always give an identical key, and
        different room ids give independent keys for the same password.

        Parameters (default):
            - Time cost: 3 iterations
            - Memory cost: 65536 KB (64 MB)
            - Parallelism: 1 thread
            - Output: 32 bytes (256 bits)

        Raises:
            KeyDerivationError: If the password or room id is empty or
                Argon2 fails
        """
        self._ensure_ready()

        if not password:
            raise KeyDerivationError(ErrorCode.E102_EMPTY_PASSWORD, "Password must not be empty")
        if not room_id:
            raise KeyDerivationError(
                ErrorCode.E203_KEY_DERIVATION_FAILED, "Room id must not be empty"
            )

        try:
            material = hash_secret_raw(
                secret=password.encode("utf-8"),
                salt=room_salt(room_id),
                time_cost=self.params.time_cost,
                memory_cost=self.params.memory_cost,
                parallelism=self.params.parallelism,
                hash_len=KEY_SIZE,
                type=Type.ID,
            )
        except HashingError as e:
            raise KeyDerivationError(
                ErrorCode.E203_KEY_DERIVATION_FAILED, f"Argon2id failed: {e}"
            ) from e

        key = SessionKey(material)
        if self.params.combine_shared_value:
            key = self.combine_with_shared_value(key, password, room_id)
        return key

    def combine_with_shared_value(self, key: SessionKey, password: str, room_id: str) -> SessionKey:
        """
        Mix an X25519-derived value into a password-derived key.

        Both peers compute the scalar from SHA-256(room id ":" password), so
        this adds no secrecy beyond the password itself. The result is
        SHA-256(key || X25519(scalar, scalar * G)).
        """
        self._ensure_ready()

        seed = hashlib.sha256(f"{room_id}:{password}".encode("utf-8")).digest()
        try:
            private_key = x25519.X25519PrivateKey.from_private_bytes(seed)
            public_bytes = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            combined = private_key.exchange(x25519.X25519PublicKey.from_public_bytes(public_bytes))
        except ValueError as e:
            raise KeyDerivationError(
                ErrorCode.E203_KEY_DERIVATION_FAILED, f"Scalar combination failed: {e}"
            ) from e

        return SessionKey(hashlib.sha256(key.material + combined).digest(), key.epoch)

    def random_nonce(self) -> bytes:
        """Full-length random nonce; no byte is replaced by a counter."""
        self._ensure_ready()
        return nacl.utils.random(NONCE_SIZE)

    def seal(self, key: SessionKey, nonce: bytes, plaintext: bytes) -> bytes:
        """XChaCha20-Poly1305 encrypt, returning ciphertext || tag."""
        self._ensure_ready()
        try:
            return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
                plaintext, None, nonce, key.material
            )
        except (nacl.exceptions.CryptoError, TypeError, ValueError) as e:
            raise EncryptionError(
                ErrorCode.E204_ENCRYPTION_FAILED, f"AEAD encryption failed: {e}"
            ) from e

    def open(self, key: SessionKey, nonce: bytes, sealed: bytes) -> bytes:
        """XChaCha20-Poly1305 decrypt and verify.

        Raises:
            AuthenticationError: On tag mismatch; no partial plaintext is
                ever returned
        """
        self._ensure_ready()
        try:
            return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                sealed, None, nonce, key.material
            )
        except nacl.exceptions.CryptoError as e:
            raise AuthenticationError(
                ErrorCode.E206_AUTHENTICATION_FAILED, "AEAD tag verification failed"
            ) from e

    def integrity_tag(self, key: SessionKey, data: bytes) -> bytes:
        """HMAC-SHA256 over data under a key derived from the session key."""
        self._ensure_ready()
        mac_key = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=WIRE_INTEGRITY_INFO,
        ).derive(key.material)
        return hmac.new(mac_key, data, hashlib.sha256).digest()

    def verify_integrity(self, key: SessionKey, data: bytes, tag: bytes) -> bool:
        """Constant-time comparison of an integrity tag."""
        return hmac.compare_digest(self.integrity_tag(key, data), tag)


def initialize(params: Optional[KdfParams] = None) -> CryptoProvider:
    """Create and initialize a CryptoProvider. Fails fast if unusable."""
    return CryptoProvider(params).initialize()
