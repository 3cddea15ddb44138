"""Private key custody: the RSA private key only leaves memory wrapped under the vault key."""
import logging
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.hazmat.primitives.asymmetric import rsa

from cloakbox.core.exceptions import FormatError
from cloakbox.core.models import EncryptedEnvelope
from .crypto import KeyPair, RSA_KEY_SIZE, generate_key_pair, jwk_to_private_key, private_key_to_jwk
from .encryption import decrypt_entry_with_key, encrypt_entry_with_key
from .kdf import DEFAULT_KDF, KdfParams, derive_symmetric_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustodyBundle:
    """A freshly generated pair together with its storable form."""

    key_pair: KeyPair
    public_jwk: Dict[str, Any]
    wrapped_private_key: EncryptedEnvelope


def wrap_private_key_with_key(private_key: rsa.RSAPrivateKey, key: bytes) -> EncryptedEnvelope:
    return encrypt_entry_with_key(private_key_to_jwk(private_key), key)


def unwrap_private_key_with_key(envelope: EncryptedEnvelope | dict, key: bytes) -> rsa.RSAPrivateKey:
    jwk = decrypt_entry_with_key(envelope, key)
    if not isinstance(jwk, dict):
        raise FormatError("Wrapped private key is not a JWK object")
    return jwk_to_private_key(jwk)


def wrap_private_key(
    private_key: rsa.RSAPrivateKey,
    secret: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF,
) -> EncryptedEnvelope:
    """Serialize the private key as a JWK and encrypt it as an entry."""
    return wrap_private_key_with_key(private_key, derive_symmetric_key(secret, salt, params))


def unwrap_private_key(
    envelope: EncryptedEnvelope | dict,
    secret: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF,
) -> rsa.RSAPrivateKey:
    """
    Inverse of :func:`wrap_private_key`.

    IntegrityError means a wrong master secret (or a corrupted blob);
    FormatError means the blob decrypted but is not a usable key.
    """
    envelope = EncryptedEnvelope.from_dict(envelope)
    return unwrap_private_key_with_key(envelope, derive_symmetric_key(secret, salt, params))


def establish_custody_with_key(key: bytes, key_size: int = RSA_KEY_SIZE) -> CustodyBundle:
    key_pair = generate_key_pair(key_size)
    wrapped = wrap_private_key_with_key(key_pair.private_key, key)
    logger.info("Generated and wrapped a new account key pair")
    return CustodyBundle(key_pair=key_pair, public_jwk=key_pair.public_jwk(), wrapped_private_key=wrapped)


def establish_custody(
    secret: str,
    salt: bytes,
    params: KdfParams = DEFAULT_KDF,
    key_size: int = RSA_KEY_SIZE,
) -> CustodyBundle:
    """
    Generate a key pair and wrap its private half for upload.

    Nothing is persisted here; if the upload fails the bundle is simply
    dropped and a new one generated on retry.
    """
    return establish_custody_with_key(derive_symmetric_key(secret, salt, params), key_size)
