"""Unit tests for symmetric entry envelopes."""

import os
from unittest.mock import patch

import pytest
from cloakbox.core.exceptions import FormatError, IntegrityError, InvalidEnvelopeError
from cloakbox.core.models import EncryptedEnvelope
from cloakbox.security.encryption import (
    decrypt_bytes,
    decrypt_entry,
    decrypt_entry_with_key,
    encrypt_bytes,
    encrypt_entry,
    encrypt_entry_with_key,
)
from cloakbox.security.kdf import KdfParams, generate_salt

FAST = KdfParams(iterations=1000)


@pytest.fixture
def salt():
    return generate_salt()


@pytest.fixture
def alias_record():
    return {
        "id": "a1b2",
        "email": "quiet.otter@example.com",
        "domain": "example.com",
        "type": "generated",
        "note": "für Newsletter ✉",
    }


def test_entry_round_trip(salt, alias_record):
    envelope = encrypt_entry(alias_record, "master", salt, FAST)
    assert decrypt_entry(envelope, "master", salt, FAST) == alias_record


def test_entry_round_trip_through_wire_form(salt, alias_record):
    wire = encrypt_entry(alias_record, "master", salt, FAST).to_dict()
    assert all(isinstance(b, int) for b in wire["ciphertext"])
    assert len(wire["iv"]) == 12
    assert decrypt_entry(wire, "master", salt, FAST) == alias_record


def test_iv_is_fresh_per_call(salt, alias_record):
    first = encrypt_entry(alias_record, "master", salt, FAST)
    second = encrypt_entry(alias_record, "master", salt, FAST)
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


def test_ciphertext_carries_gcm_tag():
    key = os.urandom(32)
    envelope = encrypt_bytes(b"hello", key)
    assert len(envelope.ciphertext) == len(b"hello") + 16
    assert decrypt_bytes(envelope, key) == b"hello"


def test_wrong_secret_raises_integrity_error(salt, alias_record):
    envelope = encrypt_entry(alias_record, "master", salt, FAST)
    with pytest.raises(IntegrityError):
        decrypt_entry(envelope, "not-master", salt, FAST)


def test_wrong_salt_raises_integrity_error(salt, alias_record):
    envelope = encrypt_entry(alias_record, "master", salt, FAST)
    with pytest.raises(IntegrityError):
        decrypt_entry(envelope, "master", generate_salt(), FAST)


def test_tampered_ciphertext_raises_integrity_error(salt, alias_record):
    envelope = encrypt_entry(alias_record, "master", salt, FAST)
    flipped = bytearray(envelope.ciphertext)
    flipped[3] ^= 0x01
    with pytest.raises(IntegrityError):
        decrypt_entry(EncryptedEnvelope(bytes(flipped), envelope.iv), "master", salt, FAST)


def test_non_json_plaintext_raises_format_error():
    key = os.urandom(32)
    envelope = encrypt_bytes(b"\xff\xfe definitely not json", key)
    with pytest.raises(FormatError):
        decrypt_entry_with_key(envelope, key)


def test_unserializable_record_raises_format_error():
    with pytest.raises(FormatError):
        encrypt_entry_with_key({"when": object()}, os.urandom(32))


def test_empty_envelope_is_rejected_before_derivation(salt):
    with patch("cloakbox.security.encryption.derive_symmetric_key") as mock_kdf:
        with pytest.raises(InvalidEnvelopeError):
            decrypt_entry({"ciphertext": [], "iv": []}, "master", salt, FAST)
        mock_kdf.assert_not_called()


def test_missing_components_are_rejected(salt):
    with pytest.raises(InvalidEnvelopeError):
        decrypt_entry({"iv": [1] * 12}, "master", salt, FAST)


def test_short_iv_is_invalid_envelope():
    key = os.urandom(32)
    envelope = encrypt_bytes(b"data", key)
    with pytest.raises(InvalidEnvelopeError):
        decrypt_bytes(EncryptedEnvelope(envelope.ciphertext, envelope.iv[:4]), key)
