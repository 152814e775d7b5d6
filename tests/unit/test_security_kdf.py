"""Unit tests for the Key Derivation Function (KDF) module."""

import pytest
from vaultkeeper.security.kdf import KEY_SIZE, PBKDF2_ITERATIONS, SALT_SIZE, derive_key, generate_salt


def test_generate_salt_defaults():
    """Ensure salt generation returns bytes of the default length (16)."""
    salt = generate_salt()
    assert isinstance(salt, bytes)
    assert len(salt) == SALT_SIZE == 16


def test_generate_salt_is_random():
    assert generate_salt() != generate_salt()


def test_derive_key_string_and_bytes_passwords_match():
    """String passwords are UTF-8 encoded before derivation."""
    salt = generate_salt()
    assert derive_key("pässword", salt) == derive_key("pässword".encode("utf-8"), salt)


def test_derive_key_defaults():
    key = derive_key("secret", b"\x00" * 16)
    assert len(key) == KEY_SIZE == 32
    assert PBKDF2_ITERATIONS == 4096


def test_derive_key_is_deterministic_per_salt():
    salt_a, salt_b = generate_salt(), generate_salt()
    assert derive_key("pw", salt_a) == derive_key("pw", salt_a)
    assert derive_key("pw", salt_a) != derive_key("pw", salt_b)


def test_derive_key_known_vector():
    """PBKDF2-HMAC-SHA256 test vector (RFC 7914, section 11)."""
    key = derive_key(b"passwd", b"salt", iterations=1, key_len=64)
    assert key.hex().startswith("55ac046e56e3089fec1691c22544b605")


@pytest.mark.parametrize("length", [16, 24, 32])
def test_derive_key_custom_length(length):
    assert len(derive_key("pw", b"s" * 16, iterations=1, key_len=length)) == length
