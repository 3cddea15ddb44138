"""Vault session: the unlocked keys for one signed-in account.

A session moves LOCKED -> UNLOCKING -> UNLOCKED and back to LOCKED. All key
material lives in a single frozen :class:`SessionState`; every transition
builds a new snapshot and swaps it in with one assignment, so concurrent
readers never see keys from two different unlocks. Readers take a snapshot
per operation and, for batches, check afterwards that the snapshot is still
current; results computed with keys from a locked session are discarded.

Every cryptographic call runs in a worker thread via :func:`asyncio.to_thread`
so that PBKDF2 and RSA generation are suspension points for the event loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from cryptography.hazmat.primitives.asymmetric import rsa

from cloakbox.core.exceptions import (
    AuthenticationError,
    CustodyError,
    FormatError,
    KeyUnavailableError,
)
from cloakbox.core.models import (
    EncryptedEnvelope,
    FieldResult,
    LoginMaterial,
    PkiStatus,
    PopulatedField,
    RegistrationBundle,
)
from .batch import BatchResult, decrypt_batch
from .crypto import (
    RSA_KEY_SIZE,
    PublicKeyLike,
    decrypt_field,
    encrypt_field,
    jwk_to_public_key,
    public_key_to_jwk,
    reveal_field,
)
from .custody import establish_custody_with_key, unwrap_private_key_with_key
from .encryption import decrypt_entry_with_key, encrypt_entry_with_key
from .kdf import (
    DEFAULT_KDF,
    KdfParams,
    derive_auth_verifier,
    derive_symmetric_key,
    generate_salt,
    kdf_params_from_dict,
    kdf_params_to_dict,
    validate_salt,
)

logger = logging.getLogger(__name__)


class VaultState(Enum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of everything a session knows. Replace, never mutate."""

    generation: int = 0
    phase: VaultState = VaultState.LOCKED
    salt: Optional[bytes] = None
    kdf: KdfParams = DEFAULT_KDF
    public_jwk: Optional[Dict[str, Any]] = None
    wrapped_private_key: Optional[EncryptedEnvelope] = None
    pki_status: PkiStatus = PkiStatus.UNKNOWN
    secret: Optional[str] = field(default=None, repr=False)
    symmetric_key: Optional[bytes] = field(default=None, repr=False)
    private_key: Optional[rsa.RSAPrivateKey] = field(default=None, repr=False)
    expires_at: Optional[float] = None

    @property
    def has_keys(self) -> bool:
        return (
            self.secret is not None
            and self.salt is not None
            and self.symmetric_key is not None
            and self.private_key is not None
            and self.public_jwk is not None
        )


def prepare_registration(
    secret: str,
    kdf: KdfParams = DEFAULT_KDF,
    key_size: int = RSA_KEY_SIZE,
) -> Tuple[RegistrationBundle, bytes, rsa.RSAPrivateKey]:
    """
    Build the registration payload for a new account.

    Returns the bundle for the server plus the derived vault key and the
    private key so the caller can start unlocked without deriving again.
    """
    salt = generate_salt()
    verifier = derive_auth_verifier(secret, salt, kdf)
    key = derive_symmetric_key(secret, salt, kdf)
    custody = establish_custody_with_key(key, key_size)
    bundle = RegistrationBundle(
        salt=salt,
        auth_key_hash=verifier,
        public_jwk=custody.public_jwk,
        wrapped_private_key=custody.wrapped_private_key,
        kdf=kdf_params_to_dict(kdf),
    )
    return bundle, key, custody.key_pair.private_key


def _same_public_key(jwk: Dict[str, Any], private_key: rsa.RSAPrivateKey) -> bool:
    return jwk_to_public_key(jwk).public_numbers() == private_key.public_key().public_numbers()


class VaultSession:
    """
    Owner-held session for one account, injected wherever records are
    encrypted or decrypted.

    ``backend`` is the server collaborator (see
    :class:`cloakbox.network.adapter.AccountBackend`).
    """

    def __init__(
        self,
        backend,
        kdf: KdfParams = DEFAULT_KDF,
        key_size: int = RSA_KEY_SIZE,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._default_kdf = kdf
        self._key_size = key_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._state = SessionState()

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    def _snapshot(self) -> SessionState:
        state = self._state
        if state.expires_at is not None and self._clock() > state.expires_at:
            # auto-lock on expiry
            self.lock()
            raise KeyUnavailableError("Session expired and was locked")
        return state

    @property
    def state(self) -> VaultState:
        try:
            snapshot = self._snapshot()
        except KeyUnavailableError:
            return VaultState.LOCKED
        if snapshot.phase is VaultState.UNLOCKED and not snapshot.has_keys:
            return VaultState.LOCKED
        return snapshot.phase

    @property
    def is_unlocked(self) -> bool:
        return self.state is VaultState.UNLOCKED

    @property
    def salt(self) -> Optional[bytes]:
        try:
            return self._snapshot().salt
        except KeyUnavailableError:
            return None

    @property
    def public_jwk(self) -> Optional[Dict[str, Any]]:
        try:
            return self._snapshot().public_jwk
        except KeyUnavailableError:
            return None

    def _require_keys(self) -> SessionState:
        state = self._snapshot()
        if state.phase is not VaultState.UNLOCKED or not state.has_keys:
            raise KeyUnavailableError("Vault is locked")
        return state

    def _ensure_current(self, state: SessionState) -> None:
        if self._state.generation != state.generation:
            raise KeyUnavailableError("Vault was locked while the operation was running")

    def _expiry(self) -> Optional[float]:
        if self._ttl is None:
            return None
        return self._clock() + float(self._ttl)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def load_login_material(self, material: LoginMaterial) -> None:
        """Adopt the salt and public key material of a freshly signed-in account."""
        kdf = kdf_params_from_dict(material.kdf) if material.kdf else self._default_kdf
        self._state = SessionState(
            generation=self._state.generation + 1,
            salt=validate_salt(material.salt),
            kdf=kdf,
            public_jwk=material.public_jwk,
            wrapped_private_key=material.wrapped_private_key,
            pki_status=material.pki_status,
        )
        logger.info("Loaded account material (pki=%s)", material.pki_status.value)

    async def login(self, email: str, password: str) -> LoginMaterial:
        material = await self._backend.login(email, password)
        self.load_login_material(material)
        return material

    async def register(self, email: str, password: str, secret: str) -> RegistrationBundle:
        """
        Create the account's key material, push it, and start unlocked.

        A ``lock()`` or login that lands while this runs wins: the new keys
        are dropped and KeyUnavailableError is raised.
        """
        base = self._state
        bundle, key, private_key = await asyncio.to_thread(
            prepare_registration, secret, self._default_kdf, self._key_size
        )
        self._ensure_current(base)
        await self._backend.register(email, password, bundle)
        self._ensure_current(base)
        self._state = SessionState(
            generation=base.generation + 1,
            phase=VaultState.UNLOCKED,
            salt=bundle.salt,
            kdf=self._default_kdf,
            public_jwk=bundle.public_jwk,
            wrapped_private_key=bundle.wrapped_private_key,
            pki_status=PkiStatus.CONFIGURED,
            secret=secret,
            symmetric_key=key,
            private_key=private_key,
            expires_at=self._expiry(),
        )
        logger.info("Registered account and unlocked vault")
        return bundle

    async def unlock(self, secret: str) -> None:
        """
        Verify ``secret`` with the server and cache the session keys.

        Raises AuthenticationError when the server rejects the verifier,
        IntegrityError/FormatError when the stored private key cannot be
        unwrapped, and CustodyError when first-use key setup fails or the
        server's PKI state is ambiguous. The session is LOCKED after any
        failure.
        """
        current = self._state
        if current.salt is None:
            raise KeyUnavailableError("No salt loaded; log in first")

        base = replace(
            current,
            generation=current.generation + 1,
            phase=VaultState.UNLOCKING,
            secret=None,
            symmetric_key=None,
            private_key=None,
            expires_at=None,
        )
        self._state = base
        logger.info("Unlocking vault")

        try:
            verifier = await asyncio.to_thread(derive_auth_verifier, secret, base.salt, base.kdf)
            accepted = await self._backend.verify_master(verifier)
            if not accepted:
                raise AuthenticationError("Master password was rejected")

            key = await asyncio.to_thread(derive_symmetric_key, secret, base.salt, base.kdf)
            private_key, public_jwk, wrapped = await self._materialize_private_key(base, key)
        except BaseException:
            if self._state.generation == base.generation:
                self._state = replace(base, phase=VaultState.LOCKED)
            logger.info("Unlock failed; vault stays locked")
            raise

        self._ensure_current(base)
        self._state = replace(
            base,
            generation=base.generation + 1,
            phase=VaultState.UNLOCKED,
            public_jwk=public_jwk,
            wrapped_private_key=wrapped,
            pki_status=PkiStatus.CONFIGURED,
            secret=secret,
            symmetric_key=key,
            private_key=private_key,
            expires_at=self._expiry(),
        )
        logger.info("Vault unlocked")

    async def _materialize_private_key(
        self, base: SessionState, key: bytes
    ) -> Tuple[rsa.RSAPrivateKey, Dict[str, Any], EncryptedEnvelope]:
        if base.wrapped_private_key is not None:
            private_key = await asyncio.to_thread(unwrap_private_key_with_key, base.wrapped_private_key, key)
            public_jwk = base.public_jwk
            if public_jwk is None:
                public_jwk = public_key_to_jwk(private_key.public_key())
            elif not _same_public_key(public_jwk, private_key):
                raise FormatError("Stored public key does not match the wrapped private key")
            return private_key, public_jwk, base.wrapped_private_key

        if base.pki_status is not PkiStatus.NOT_CONFIGURED:
            raise CustodyError("Server did not confirm that no key pair exists; refusing to generate one")

        logger.info("No key pair configured; generating one")
        custody = await asyncio.to_thread(establish_custody_with_key, key, self._key_size)
        try:
            stored = await self._backend.setup_pki(custody.public_jwk, custody.wrapped_private_key)
        except CustodyError:
            raise
        except Exception as exc:
            # the generated pair is dropped with this frame
            raise CustodyError("Uploading the new key pair failed") from exc
        return custody.key_pair.private_key, custody.public_jwk, stored or custody.wrapped_private_key

    def lock(self) -> None:
        """Wipe every cached key in one step."""
        self._state = SessionState(generation=self._state.generation + 1)
        logger.info("Vault locked")

    def extend(self, extra_seconds: float) -> None:
        """Push the auto-lock deadline back by ``extra_seconds``."""
        state = self._require_keys()
        base = state.expires_at if state.expires_at is not None else self._clock()
        self._state = replace(state, expires_at=base + float(extra_seconds))

    # ------------------------------------------------------------------
    # Key access
    # ------------------------------------------------------------------

    def private_key(self) -> rsa.RSAPrivateKey:
        return self._require_keys().private_key

    async def auth_verifier(self) -> str:
        state = self._require_keys()
        return await asyncio.to_thread(derive_auth_verifier, state.secret, state.salt, state.kdf)

    # ------------------------------------------------------------------
    # Entries (symmetric)
    # ------------------------------------------------------------------

    async def encrypt_entry(self, record: Any) -> EncryptedEnvelope:
        state = self._require_keys()
        return await asyncio.to_thread(encrypt_entry_with_key, record, state.symmetric_key)

    async def decrypt_entry(self, envelope: EncryptedEnvelope | dict) -> Any:
        state = self._require_keys()
        record = await asyncio.to_thread(decrypt_entry_with_key, envelope, state.symmetric_key)
        self._ensure_current(state)
        return record

    async def decrypt_with_vault_key(
        self,
        records: Sequence[Any],
        decrypt: Callable[[Any, bytes], Any],
        *,
        label: str = "entry",
    ) -> BatchResult:
        """Batch-decrypt with ``decrypt(record, vault_key)``, isolating failures."""
        state = self._require_keys()
        key = state.symmetric_key
        result = await decrypt_batch(records, lambda record: decrypt(record, key), label=label)
        self._ensure_current(state)
        return result

    async def decrypt_entries(self, envelopes: Sequence[Any]) -> BatchResult:
        return await self.decrypt_with_vault_key(envelopes, decrypt_entry_with_key)

    # ------------------------------------------------------------------
    # Fields (hybrid)
    # ------------------------------------------------------------------

    async def encrypt_field(self, plaintext: str, public_key: Optional[PublicKeyLike] = None) -> PopulatedField:
        """Encrypt for ``public_key``, or for this account when omitted."""
        if public_key is None:
            public_key = self._snapshot().public_jwk
            if public_key is None:
                raise KeyUnavailableError("No public key loaded")
        return await asyncio.to_thread(encrypt_field, plaintext, public_key)

    async def decrypt_field(self, field: Any) -> str:
        state = self._require_keys()
        plaintext = await asyncio.to_thread(decrypt_field, field, state.private_key)
        self._ensure_current(state)
        return plaintext

    async def reveal_field(self, raw: Any) -> FieldResult:
        state = self._require_keys()
        result = await asyncio.to_thread(reveal_field, raw, state.private_key)
        self._ensure_current(state)
        return result

    async def decrypt_with_private_key(
        self,
        records: Sequence[Any],
        decrypt: Callable[[Any, rsa.RSAPrivateKey], Any],
        *,
        label: str = "record",
    ) -> BatchResult:
        """Batch-decrypt with ``decrypt(record, private_key)``, isolating failures."""
        state = self._require_keys()
        private_key = state.private_key
        result = await decrypt_batch(records, lambda record: decrypt(record, private_key), label=label)
        self._ensure_current(state)
        return result
