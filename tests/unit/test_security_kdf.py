"""Unit tests for the Key Derivation Function (KDF) module."""

import hashlib

import pytest
from cloakbox.core.exceptions import InvalidSaltError
from cloakbox.security.kdf import (
    ARGON2ID,
    DEFAULT_KDF,
    KdfParams,
    derive_auth_verifier,
    derive_symmetric_key,
    generate_salt,
    kdf_params_from_dict,
    kdf_params_to_dict,
    validate_salt,
)

FAST = KdfParams(iterations=1000)


def test_generate_salt_defaults():
    """Ensure salt generation returns bytes of the default length (16)."""
    salt = generate_salt()
    assert isinstance(salt, bytes)
    assert len(salt) == 16
    assert generate_salt() != salt


def test_validate_salt_accepts_byte_array():
    assert validate_salt(list(range(16))) == bytes(range(16))


@pytest.mark.parametrize("bad", [b"", b"x" * 15, b"x" * 17, "0" * 16, None, [300] * 16])
def test_validate_salt_rejects_malformed(bad):
    with pytest.raises(InvalidSaltError):
        validate_salt(bad)


def test_default_parameters_are_pbkdf2_310k():
    assert DEFAULT_KDF.algorithm == "pbkdf2-sha256"
    assert DEFAULT_KDF.iterations == 310_000
    assert DEFAULT_KDF.key_len == 32


def test_derive_symmetric_key_matches_pbkdf2_sha256():
    salt = generate_salt()
    key = derive_symmetric_key("hunter2", salt, FAST)
    assert key == hashlib.pbkdf2_hmac("sha256", b"hunter2", salt, 1000, 32)


def test_derive_symmetric_key_str_and_bytes_agree():
    salt = generate_salt()
    assert derive_symmetric_key("pässword", salt, FAST) == derive_symmetric_key("pässword".encode("utf-8"), salt, FAST)


def test_derive_symmetric_key_rejects_short_salt():
    with pytest.raises(InvalidSaltError):
        derive_symmetric_key("secret", b"short", FAST)


def test_auth_verifier_construction():
    """hex(PBKDF2(secret + '|auth')) hashed once more with SHA-256."""
    salt = generate_salt()
    raw = hashlib.pbkdf2_hmac("sha256", b"secret|auth", salt, 1000, 32)
    expected = hashlib.sha256(raw.hex().encode("ascii")).hexdigest()
    assert derive_auth_verifier("secret", salt, FAST) == expected


def test_auth_verifier_is_independent_of_vault_key():
    salt = generate_salt()
    key = derive_symmetric_key("secret", salt, FAST)
    verifier = derive_auth_verifier("secret", salt, FAST)
    assert bytes.fromhex(verifier) != key
    assert verifier != hashlib.sha256(key.hex().encode("ascii")).hexdigest()


def test_registration_scenario_with_default_parameters():
    """64-char hex output, deterministic, and sensitive to every salt byte."""
    salt = generate_salt()
    secret = "correct horse battery staple"

    first = derive_auth_verifier(secret, salt)
    assert len(first) == 64
    int(first, 16)
    assert derive_auth_verifier(secret, salt) == first

    changed = bytes([salt[0] ^ 0x01]) + salt[1:]
    assert derive_auth_verifier(secret, changed) != first


def test_argon2id_derivation():
    salt = generate_salt()
    params = KdfParams(algorithm=ARGON2ID, time_cost=1, memory_cost=1024, parallelism=1)
    key = derive_symmetric_key("secret", salt, params)
    assert len(key) == 32
    assert key == derive_symmetric_key("secret", salt, params)
    assert key != derive_symmetric_key("secret", salt, FAST)


def test_unknown_algorithm_raises():
    with pytest.raises(ValueError):
        derive_symmetric_key("secret", generate_salt(), KdfParams(algorithm="md5"))


def test_kdf_params_round_trip():
    argon = KdfParams(algorithm=ARGON2ID, time_cost=2, memory_cost=2048, parallelism=2)
    assert kdf_params_from_dict(kdf_params_to_dict(argon)) == argon
    assert kdf_params_from_dict(kdf_params_to_dict(FAST)) == FAST
    assert kdf_params_to_dict(DEFAULT_KDF) == {"algo": "pbkdf2-sha256", "iterations": 310_000}


def test_kdf_params_from_empty_meta_uses_defaults():
    assert kdf_params_from_dict(None) == DEFAULT_KDF
    assert kdf_params_from_dict({}) == DEFAULT_KDF


def test_kdf_params_from_dict_rejects_unknown_algorithm():
    with pytest.raises(ValueError):
        kdf_params_from_dict({"algo": "scrypt"})
