"""
EchoMesh - Key derivation and provider tests.

Tests for Argon2id room keys, the optional X25519 combination stage and
the initialize() gate.
"""

import hashlib

import pytest
from argon2.low_level import Type, hash_secret_raw

from echomesh import crypto
from echomesh.errors import CryptoInitializationError, KeyDerivationError

ROOM_ID = "room-abc123xyz789"
PASSWORD = "Sn0wLeopard!"
GOLDEN_KEY_HEX = "30e8ec1154f4c438cd0085515afa7e0789904184ed217389eaefb64326ab0faa"


def test_derive_key_is_deterministic(provider):
    """Same password and room id always give the same 32-byte key."""
    key1 = provider.derive_key(PASSWORD, ROOM_ID)
    key2 = provider.derive_key(PASSWORD, ROOM_ID)

    assert len(key1) == 32
    assert key1.material == key2.material


def test_derive_key_golden_value(provider):
    """The snow leopard room always derives this exact key."""
    key = provider.derive_key(PASSWORD, ROOM_ID)

    assert key.material.hex() == GOLDEN_KEY_HEX


def test_derive_key_reference_vector(provider):
    """The key equals Argon2id(password, SHA-256(room id)[:16]) with t=3, m=64MB, p=1."""
    expected = hash_secret_raw(
        secret=PASSWORD.encode("utf-8"),
        salt=hashlib.sha256(ROOM_ID.encode("utf-8")).digest()[:16],
        time_cost=3,
        memory_cost=65536,
        parallelism=1,
        hash_len=32,
        type=Type.ID,
    )

    key = provider.derive_key(PASSWORD, ROOM_ID)

    assert key.material == expected


def test_different_rooms_give_different_keys(provider):
    """Two room ids with the same password yield independent keys."""
    key1 = provider.derive_key(PASSWORD, "room-aaaaaaaaaaaaaaaaaaaa")
    key2 = provider.derive_key(PASSWORD, "room-aaaaaaaaaaaaaaaaaaab")

    assert key1.material != key2.material


def test_one_character_password_change(fast_provider):
    key1 = fast_provider.derive_key(PASSWORD, ROOM_ID)
    key2 = fast_provider.derive_key("Sn0wLeopard?", ROOM_ID)

    assert key1.material != key2.material


def test_empty_password_rejected(fast_provider):
    with pytest.raises(KeyDerivationError):
        fast_provider.derive_key("", ROOM_ID)


def test_empty_room_id_rejected(fast_provider):
    with pytest.raises(KeyDerivationError):
        fast_provider.derive_key(PASSWORD, "")


def test_room_salt():
    salt = crypto.room_salt(ROOM_ID)

    assert len(salt) == 16
    assert salt == hashlib.sha256(ROOM_ID.encode()).digest()[:16]


def test_uninitialized_provider_fails_fast():
    """Operations before initialize() raise instead of proceeding."""
    provider = crypto.CryptoProvider()

    assert not provider.ready
    with pytest.raises(CryptoInitializationError):
        provider.derive_key(PASSWORD, ROOM_ID)
    with pytest.raises(CryptoInitializationError):
        provider.random_nonce()


def test_initialize_is_idempotent():
    provider = crypto.CryptoProvider()

    assert provider.initialize() is provider
    assert provider.initialize() is provider
    assert provider.ready


def test_initialize_failure(monkeypatch):
    """A broken libsodium surfaces as CryptoInitializationError at startup."""

    def broken():
        raise RuntimeError("sodium unavailable")

    monkeypatch.setattr("nacl.bindings.sodium_init", broken)

    with pytest.raises(CryptoInitializationError):
        crypto.initialize()


def test_combine_with_shared_value(fast_provider):
    """Both peers compute the same combined key, distinct from the base key."""
    base = fast_provider.derive_key(PASSWORD, ROOM_ID)

    alice = fast_provider.combine_with_shared_value(base, PASSWORD, ROOM_ID)
    bob = fast_provider.combine_with_shared_value(base, PASSWORD, ROOM_ID)

    assert alice.material == bob.material
    assert alice.material != base.material
    assert len(alice) == 32


def test_combine_flag_applies_second_stage():
    params = crypto.KdfParams(time_cost=1, memory_cost=8192, parallelism=1)
    plain = crypto.initialize(params)
    combining = crypto.initialize(
        crypto.KdfParams(time_cost=1, memory_cost=8192, parallelism=1, combine_shared_value=True)
    )

    base = plain.derive_key(PASSWORD, ROOM_ID)
    combined = combining.derive_key(PASSWORD, ROOM_ID)

    assert combined.material == plain.combine_with_shared_value(base, PASSWORD, ROOM_ID).material


def test_session_key_validation():
    with pytest.raises(KeyDerivationError):
        crypto.SessionKey(b"short")


def test_session_key_repr_hides_material():
    key = crypto.SessionKey(b"\x01" * 32, epoch=3)

    assert "\\x01" not in repr(key)
    assert "epoch=3" in repr(key)


def test_session_key_fingerprint():
    key = crypto.SessionKey(b"\x02" * 32)
    fingerprint = key.fingerprint()

    assert len(fingerprint) == 16
    assert all(c in "0123456789abcdef" for c in fingerprint)
    assert fingerprint == crypto.SessionKey(b"\x02" * 32, epoch=9).fingerprint()
    assert fingerprint != crypto.SessionKey(b"\x03" * 32).fingerprint()


def test_session_key_with_epoch():
    key = crypto.SessionKey(b"\x04" * 32)
    rebound = key.with_epoch(5)

    assert rebound.epoch == 5
    assert rebound.material == key.material
    assert key.epoch == 0


def test_random_nonce_is_full_length_and_unique(fast_provider):
    """Nonces are 24 random bytes with no fixed prefix."""
    nonces = [fast_provider.random_nonce() for _ in range(2000)]

    assert all(len(n) == 24 for n in nonces)
    assert len(set(nonces)) == len(nonces)
    # No counter or constant in the leading bytes
    assert len({n[:4] for n in nonces}) > 1900


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
