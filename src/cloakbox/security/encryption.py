"""
Symmetric "entry" envelopes for CloakBox.

An entry is any JSON-serializable record (an alias, a wrapped private key)
encrypted under the key derived from the master secret:

- AES-256-GCM (via :class:`cryptography.hazmat.primitives.ciphers.aead.AESGCM`)
- fresh 96-bit random IV per call
- ciphertext carries the 16-byte GCM tag at its end

The functions taking ``secret``/``salt`` derive the key on every call. The
``*_with_key`` variants take an already derived key and are what an unlocked
:class:`~cloakbox.security.session.VaultSession` uses.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cloakbox.core.exceptions import FormatError, IntegrityError, InvalidEnvelopeError
from cloakbox.core.models import EncryptedEnvelope
from .kdf import DEFAULT_KDF, KdfParams, derive_symmetric_key

logger = logging.getLogger(__name__)

IV_LENGTH = 12


# ------------------------------------------------------------------
# Byte-level encryption
# ------------------------------------------------------------------


def encrypt_bytes(data: bytes, key: bytes) -> EncryptedEnvelope:
    """Encrypt raw bytes under ``key`` with a fresh IV."""
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(key).encrypt(iv, data, None)
    return EncryptedEnvelope(ciphertext=ciphertext, iv=iv)


def decrypt_bytes(envelope: EncryptedEnvelope, key: bytes) -> bytes:
    """
    Decrypt an envelope produced by :func:`encrypt_bytes`.

    Raises InvalidEnvelopeError for empty parts and IntegrityError when the
    tag does not verify.
    """
    if envelope.is_empty:
        raise InvalidEnvelopeError("Encrypted envelope has an empty ciphertext or iv")
    try:
        return AESGCM(key).decrypt(envelope.iv, envelope.ciphertext, None)
    except InvalidTag as exc:
        raise IntegrityError("Authenticated decryption failed") from exc
    except ValueError as exc:
        # AESGCM rejects IVs outside 8..128 bytes before touching the data
        raise InvalidEnvelopeError("Encrypted envelope has an invalid iv") from exc


# ------------------------------------------------------------------
# JSON entries
# ------------------------------------------------------------------


def _serialize(record: Any) -> bytes:
    try:
        return json.dumps(record, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise FormatError("Record is not JSON-serializable") from exc


def _deserialize(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise FormatError("Decrypted entry is not valid JSON") from exc


def encrypt_entry_with_key(record: Any, key: bytes) -> EncryptedEnvelope:
    return encrypt_bytes(_serialize(record), key)


def decrypt_entry_with_key(envelope: EncryptedEnvelope | dict, key: bytes) -> Any:
    envelope = EncryptedEnvelope.from_dict(envelope)
    return _deserialize(decrypt_bytes(envelope, key))


def encrypt_entry(
    record: Any,
    secret: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF,
) -> EncryptedEnvelope:
    """
    Encrypt a JSON-serializable record under the key derived from ``secret``.

    The record is serialized with :func:`json.dumps` as UTF-8.
    """
    key = derive_symmetric_key(secret, salt, params)
    return encrypt_entry_with_key(record, key)


def decrypt_entry(
    envelope: EncryptedEnvelope | dict,
    secret: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF,
) -> Any:
    """
    Decrypt an entry previously produced by :func:`encrypt_entry`.

    A wrong secret or tampered ciphertext raises IntegrityError; bytes that
    decrypt but do not parse raise FormatError.
    """
    envelope = EncryptedEnvelope.from_dict(envelope)
    if envelope.is_empty:
        raise InvalidEnvelopeError("Encrypted envelope has an empty ciphertext or iv")
    key = derive_symmetric_key(secret, salt, params)
    return decrypt_entry_with_key(envelope, key)
