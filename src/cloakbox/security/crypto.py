"""Hybrid RSA-OAEP + AES-GCM field encryption.

Every string field (event title, email subject, calendar name) gets its own
one-time AES-256 key. The field is encrypted with that key and the key itself
is RSA-OAEP(SHA-256) encrypted to the recipient's public key. The three parts
are base64 text on the wire:

    {"ciphertext": "<b64 ct||tag>", "iv": "<b64 12 bytes>", "encryptedKey": "<b64 rsa blob>"}

Keys are exchanged as JWK objects in the shape WebCrypto exports, so a key
pair generated here can be used by the web client and vice versa.
"""
import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cloakbox.core.exceptions import FormatError, IntegrityError, InvalidEnvelopeError
from cloakbox.core.models import (
    AbsentField,
    FieldResult,
    FieldStatus,
    LegacyField,
    PopulatedField,
    classify_field,
)

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
FIELD_KEY_LENGTH = 32
IV_LENGTH = 12
JWK_ALG = "RSA-OAEP-256"

PublicKeyLike = Union[rsa.RSAPublicKey, Dict[str, Any]]
PrivateKeyLike = Union[rsa.RSAPrivateKey, Dict[str, Any]]


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


@dataclass(frozen=True)
class KeyPair:
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey

    def public_jwk(self) -> Dict[str, Any]:
        return public_key_to_jwk(self.public_key)

    def private_jwk(self) -> Dict[str, Any]:
        return private_key_to_jwk(self.private_key)


def generate_key_pair(key_size: int = RSA_KEY_SIZE) -> KeyPair:
    """Generate an RSA key pair for OAEP/SHA-256. Slow; once per account."""
    if key_size < 2048:
        raise ValueError("RSA key size must be at least 2048 bits")
    private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    logger.info("Generated %d-bit RSA key pair", key_size)
    return KeyPair(public_key=private_key.public_key(), private_key=private_key)


# ------------------------------------------------------------------
# JWK import / export
# ------------------------------------------------------------------


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _uint_b64url(text: Any, name: str) -> int:
    if not isinstance(text, str) or not text:
        raise FormatError(f"JWK member {name!r} is missing")
    try:
        raw = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as exc:
        raise FormatError(f"JWK member {name!r} is not base64url") from exc
    return int.from_bytes(raw, "big")


def public_key_to_jwk(public_key: rsa.RSAPublicKey) -> Dict[str, Any]:
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "alg": JWK_ALG,
        "ext": True,
        "key_ops": ["encrypt"],
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
    }


def private_key_to_jwk(private_key: rsa.RSAPrivateKey) -> Dict[str, Any]:
    numbers = private_key.private_numbers()
    jwk = public_key_to_jwk(private_key.public_key())
    jwk.update(
        {
            "key_ops": ["decrypt"],
            "d": _b64url_uint(numbers.d),
            "p": _b64url_uint(numbers.p),
            "q": _b64url_uint(numbers.q),
            "dp": _b64url_uint(numbers.dmp1),
            "dq": _b64url_uint(numbers.dmq1),
            "qi": _b64url_uint(numbers.iqmp),
        }
    )
    return jwk


def jwk_to_public_key(jwk: Dict[str, Any]) -> rsa.RSAPublicKey:
    if not isinstance(jwk, dict) or jwk.get("kty") != "RSA":
        raise FormatError("Not an RSA JWK")
    try:
        return rsa.RSAPublicNumbers(_uint_b64url(jwk.get("e"), "e"), _uint_b64url(jwk.get("n"), "n")).public_key()
    except ValueError as exc:
        raise FormatError("JWK does not describe a valid RSA public key") from exc


def jwk_to_private_key(jwk: Dict[str, Any]) -> rsa.RSAPrivateKey:
    if not isinstance(jwk, dict) or jwk.get("kty") != "RSA":
        raise FormatError("Not an RSA JWK")
    public_numbers = rsa.RSAPublicNumbers(_uint_b64url(jwk.get("e"), "e"), _uint_b64url(jwk.get("n"), "n"))
    numbers = rsa.RSAPrivateNumbers(
        p=_uint_b64url(jwk.get("p"), "p"),
        q=_uint_b64url(jwk.get("q"), "q"),
        d=_uint_b64url(jwk.get("d"), "d"),
        dmp1=_uint_b64url(jwk.get("dp"), "dp"),
        dmq1=_uint_b64url(jwk.get("dq"), "dq"),
        iqmp=_uint_b64url(jwk.get("qi"), "qi"),
        public_numbers=public_numbers,
    )
    try:
        return numbers.private_key()
    except ValueError as exc:
        raise FormatError("JWK does not describe a valid RSA private key") from exc


def _as_public_key(key: PublicKeyLike) -> rsa.RSAPublicKey:
    if isinstance(key, rsa.RSAPublicKey):
        return key
    return jwk_to_public_key(key)


def _as_private_key(key: PrivateKeyLike) -> rsa.RSAPrivateKey:
    if isinstance(key, rsa.RSAPrivateKey):
        return key
    return jwk_to_private_key(key)


# ------------------------------------------------------------------
# Field encryption
# ------------------------------------------------------------------


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: str, name: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidEnvelopeError(f"Field component {name!r} is not base64") from exc


def encrypt_field(plaintext: str, public_key: PublicKeyLike) -> PopulatedField:
    """Encrypt one string for the holder of ``public_key``."""
    field_key = AESGCM.generate_key(bit_length=FIELD_KEY_LENGTH * 8)
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(field_key).encrypt(iv, plaintext.encode("utf-8"), None)
    encrypted_key = _as_public_key(public_key).encrypt(field_key, _oaep())
    return PopulatedField(
        ciphertext=_b64encode(ciphertext),
        iv=_b64encode(iv),
        encrypted_key=_b64encode(encrypted_key),
    )


def decrypt_field(field: Any, private_key: PrivateKeyLike) -> str:
    """
    Decrypt a populated hybrid field.

    Anything that is not a fully populated envelope raises
    InvalidEnvelopeError before any RSA work happens; callers that may see
    legacy records should go through :func:`reveal_field` instead.
    """
    field = classify_field(field)
    if not isinstance(field, PopulatedField):
        raise InvalidEnvelopeError("Encrypted field is missing required components")

    encrypted_key = _b64decode(field.encrypted_key, "encryptedKey")
    iv = _b64decode(field.iv, "iv")
    ciphertext = _b64decode(field.ciphertext, "ciphertext")
    if not encrypted_key or not iv or not ciphertext:
        raise InvalidEnvelopeError("Encrypted field has an empty component")

    try:
        field_key = _as_private_key(private_key).decrypt(encrypted_key, _oaep())
    except ValueError as exc:
        raise IntegrityError("Could not unwrap the field key") from exc

    try:
        plaintext = AESGCM(field_key).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise IntegrityError("Authenticated decryption failed") from exc
    except ValueError as exc:
        raise InvalidEnvelopeError("Field key or iv has an invalid length") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError("Decrypted field is not UTF-8 text") from exc


def reveal_field(raw: Any, private_key: PrivateKeyLike) -> FieldResult:
    """
    Turn any wire value into a displayable result without raising on bad crypto.

    Legacy values pass through as plaintext, absent values are empty, and a
    populated field that fails to decrypt is reported as unavailable.
    """
    try:
        field = classify_field(raw)
    except InvalidEnvelopeError:
        logger.warning("Unrecognised field value; marking unavailable")
        return FieldResult(FieldStatus.UNAVAILABLE)

    if isinstance(field, AbsentField):
        return FieldResult(FieldStatus.EMPTY)
    if isinstance(field, LegacyField):
        if field.plaintext is None:
            return FieldResult(FieldStatus.UNAVAILABLE)
        return FieldResult(FieldStatus.PLAINTEXT, field.plaintext)

    try:
        return FieldResult(FieldStatus.DECRYPTED, decrypt_field(field, private_key))
    except (IntegrityError, FormatError, InvalidEnvelopeError) as exc:
        logger.warning("Field decryption failed: %s", exc.__class__.__name__)
        return FieldResult(FieldStatus.UNAVAILABLE)
