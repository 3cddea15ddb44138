"""Key derivation for CloakBox: the vault key and the server auth verifier."""
import hashlib
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from cloakbox.core.exceptions import InvalidSaltError

SALT_LENGTH = 16
KEY_LENGTH = 32
AUTH_DOMAIN_SUFFIX = "|auth"

PBKDF2_SHA256 = "pbkdf2-sha256"
ARGON2ID = "argon2id"


@dataclass(frozen=True)
class KdfParams:
    """
    Versioned derivation parameters.

    Changing any value changes every derived key, so the parameters are
    stored with the account and must be held constant for its data.
    """

    algorithm: str = PBKDF2_SHA256
    iterations: int = 310_000
    time_cost: int = 3
    memory_cost: int = 65536
    parallelism: int = 1
    key_len: int = KEY_LENGTH


DEFAULT_KDF = KdfParams()


def generate_salt(length: int = SALT_LENGTH) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def validate_salt(salt: Any) -> bytes:
    """Return ``salt`` as bytes or raise InvalidSaltError."""
    if isinstance(salt, list):
        try:
            salt = bytes(salt)
        except (TypeError, ValueError) as exc:
            raise InvalidSaltError("Salt is not a byte array") from exc
    if not isinstance(salt, (bytes, bytearray)):
        raise InvalidSaltError("Salt must be bytes")
    if len(salt) != SALT_LENGTH:
        raise InvalidSaltError(f"Salt must be exactly {SALT_LENGTH} bytes")
    return bytes(salt)


def _derive_raw(secret: bytes, salt: bytes, params: KdfParams) -> bytes:
    if params.algorithm == PBKDF2_SHA256:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=params.key_len,
            salt=salt,
            iterations=params.iterations,
        )
        return kdf.derive(secret)
    if params.algorithm == ARGON2ID:
        return hash_secret_raw(
            secret=secret,
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.key_len,
            type=Type.ID,
        )
    raise ValueError(f"Unsupported KDF algorithm: {params.algorithm!r}")


def derive_symmetric_key(secret: str | bytes, salt: bytes, params: KdfParams = DEFAULT_KDF) -> bytes:
    """
    Derive the 256-bit vault key from the master secret.
    Returns raw key bytes, only ever fed to AES-GCM.
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return _derive_raw(secret, validate_salt(salt), params)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def derive_auth_verifier(secret: str, salt: bytes, params: KdfParams = DEFAULT_KDF) -> str:
    """
    Derive the value sent to the server to prove knowledge of the master secret.

    The secret gets a domain suffix before derivation so the result is
    independent of the vault key; the raw bits are hex-encoded and hashed
    with SHA-256 once more.
    """
    raw = _derive_raw((secret + AUTH_DOMAIN_SUFFIX).encode("utf-8"), validate_salt(salt), params)
    return sha256_hex(raw.hex())


def kdf_params_to_dict(params: KdfParams) -> Dict:
    if params.algorithm == ARGON2ID:
        return {
            "algo": ARGON2ID,
            "time": params.time_cost,
            "memory": params.memory_cost,
            "parallelism": params.parallelism,
        }
    return {"algo": params.algorithm, "iterations": params.iterations}


def kdf_params_from_dict(meta: Optional[Dict]) -> KdfParams:
    # Accounts created before parameters were stored use the defaults.
    if not meta:
        return DEFAULT_KDF
    algo = meta.get("algo", PBKDF2_SHA256)
    if algo == ARGON2ID:
        return KdfParams(
            algorithm=ARGON2ID,
            time_cost=int(meta.get("time", 3)),
            memory_cost=int(meta.get("memory", 65536)),
            parallelism=int(meta.get("parallelism", 1)),
        )
    if algo == PBKDF2_SHA256:
        return KdfParams(iterations=int(meta.get("iterations", DEFAULT_KDF.iterations)))
    raise ValueError(f"Unsupported KDF algorithm: {algo!r}")
