"""Security helpers: key derivation, entry and field envelopes, key custody and the vault session.

This package provides:
- PBKDF2-SHA256 (or Argon2id) key derivation and the domain-separated auth verifier
- AES-256-GCM "entry" envelopes for JSON records
- hybrid RSA-OAEP + AES-GCM "field" envelopes
- private key wrapping under the vault key
- the VaultSession that caches unlocked keys
"""

from .kdf import generate_salt, validate_salt, derive_symmetric_key, derive_auth_verifier, KdfParams
from .encryption import encrypt_entry, decrypt_entry
from .crypto import KeyPair, generate_key_pair, encrypt_field, decrypt_field, reveal_field
from .custody import wrap_private_key, unwrap_private_key, establish_custody
from .batch import BatchResult, decrypt_batch
from .session import VaultSession, VaultState

__all__ = [
    "generate_salt",
    "validate_salt",
    "derive_symmetric_key",
    "derive_auth_verifier",
    "KdfParams",
    "encrypt_entry",
    "decrypt_entry",
    "KeyPair",
    "generate_key_pair",
    "encrypt_field",
    "decrypt_field",
    "reveal_field",
    "wrap_private_key",
    "unwrap_private_key",
    "establish_custody",
    "BatchResult",
    "decrypt_batch",
    "VaultSession",
    "VaultState",
]
