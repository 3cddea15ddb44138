"""
Server collaborator interface for the vault session.

The session only ever talks to the server through :class:`AccountBackend`.
Everything crossing this boundary is either public (salt, public key, KDF
parameters, verifier hash) or ciphertext.
"""
import abc
import hashlib
import hmac
import logging
import uuid
from typing import Any, Dict, Optional

from cloakbox.core.exceptions import (
    AccountExistsError,
    AccountNotFoundError,
    BackendError,
)
from cloakbox.core.models import EncryptedEnvelope, LoginMaterial, RegistrationBundle

logger = logging.getLogger(__name__)


class AccountBackend(abc.ABC):
    """Async boundary to the account service."""

    @abc.abstractmethod
    async def register(self, email: str, password: str, bundle: RegistrationBundle) -> str:
        """Persist a new account's key material; return a session token."""

    @abc.abstractmethod
    async def login(self, email: str, password: str) -> LoginMaterial:
        """Credentials step; returns salt and (maybe) the stored key material."""

    @abc.abstractmethod
    async def verify_master(self, auth_key_hash: str) -> bool:
        """Compare the verifier with the stored one; accept/reject only."""

    @abc.abstractmethod
    async def setup_pki(self, public_jwk: Dict[str, Any], wrapped_private_key: EncryptedEnvelope) -> EncryptedEnvelope:
        """Store a first key pair; must refuse to overwrite an existing one."""


def _password_digest(password: str) -> bytes:
    return hashlib.sha256(password.encode("utf-8")).digest()


class InMemoryAccountBackend(AccountBackend):
    """
    Dict-backed account service.

    Mirrors the server contract closely enough for tests and the CLI demo:
    it stores only what the client sends, tracks a signed-in account per
    instance, and reports PKI absence with an explicit flag.
    """

    def __init__(self):
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self._current: Optional[str] = None
        self.token: Optional[str] = None

    def _account(self) -> Dict[str, Any]:
        if self._current is None:
            raise BackendError("Not signed in")
        return self.accounts[self._current]

    def add_account(self, email: str, password: str, salt: bytes, auth_key_hash: str,
                    kdf: Optional[Dict[str, Any]] = None) -> None:
        """Seed an account that has no key pair yet (created before PKI existed)."""
        if email in self.accounts:
            raise AccountExistsError(f"Account already exists: {email}")
        self.accounts[email] = {
            "password": _password_digest(password),
            "salt": bytes(salt),
            "authKeyHash": auth_key_hash,
            "publicKey": None,
            "encryptedPrivateKey": None,
            "kdf": kdf or {},
        }

    async def register(self, email: str, password: str, bundle: RegistrationBundle) -> str:
        self.add_account(email, password, bundle.salt, bundle.auth_key_hash, bundle.kdf)
        account = self.accounts[email]
        account["publicKey"] = bundle.public_jwk
        account["encryptedPrivateKey"] = bundle.wrapped_private_key
        self._current = email
        self.token = uuid.uuid4().hex
        logger.info("Registered account %s", email)
        return self.token

    def user_payload(self, email: str) -> Dict[str, Any]:
        """The ``user`` object a login response carries, in wire form."""
        account = self.accounts[email]
        wrapped = account["encryptedPrivateKey"]
        return {
            "email": email,
            "salt": list(account["salt"]),
            "publicKey": account["publicKey"],
            "encryptedPrivateKey": wrapped.to_dict() if wrapped else None,
            "pkiConfigured": wrapped is not None,
            "kdf": account["kdf"],
        }

    async def login(self, email: str, password: str) -> LoginMaterial:
        account = self.accounts.get(email)
        if account is None or not hmac.compare_digest(account["password"], _password_digest(password)):
            raise AccountNotFoundError("Invalid credentials")
        self._current = email
        self.token = uuid.uuid4().hex
        return LoginMaterial.from_dict(self.user_payload(email))

    async def verify_master(self, auth_key_hash: str) -> bool:
        stored = self._account()["authKeyHash"]
        return hmac.compare_digest(stored.encode("ascii"), auth_key_hash.encode("ascii"))

    async def setup_pki(self, public_jwk: Dict[str, Any], wrapped_private_key: EncryptedEnvelope) -> EncryptedEnvelope:
        account = self._account()
        if account["encryptedPrivateKey"] is not None:
            raise BackendError("PKI keys are already configured for this account")
        account["publicKey"] = public_jwk
        account["encryptedPrivateKey"] = wrapped_private_key
        logger.info("Stored key pair for %s", self._current)
        return wrapped_private_key
