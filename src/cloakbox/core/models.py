"""
Wire-level data models for CloakBox envelopes and account key material
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from cloakbox.core.exceptions import InvalidEnvelopeError


def _to_bytes(value: Any, name: str) -> bytes:
    # Symmetric envelopes travel as JSON arrays of byte values.
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as exc:
            raise InvalidEnvelopeError(f"{name} is not a byte array") from exc
    raise InvalidEnvelopeError(f"{name} is missing or has the wrong type")


@dataclass(frozen=True)
class EncryptedEnvelope:
    """
    Symmetric "entry" envelope: AES-GCM ciphertext (tag appended) plus its IV.

    On the wire both parts are arrays of numbers, e.g.
    ``{"ciphertext": [12, 250, ...], "iv": [3, 91, ...]}``.
    """

    ciphertext: bytes
    iv: bytes

    @property
    def is_empty(self) -> bool:
        return not self.ciphertext or not self.iv

    def to_dict(self) -> Dict[str, list]:
        return {"ciphertext": list(self.ciphertext), "iv": list(self.iv)}

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedEnvelope":
        if isinstance(data, EncryptedEnvelope):
            return data
        if not isinstance(data, dict):
            raise InvalidEnvelopeError("Encrypted envelope must be an object")
        return cls(
            ciphertext=_to_bytes(data.get("ciphertext"), "ciphertext"),
            iv=_to_bytes(data.get("iv"), "iv"),
        )


# ----------------------------------------------------------------------
# Hybrid field envelope, as a closed set of variants
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class PopulatedField:
    """A hybrid RSA+AES field; every component is non-empty base64 text."""

    ciphertext: str
    iv: str
    encrypted_key: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": self.ciphertext,
            "iv": self.iv,
            "encryptedKey": self.encrypted_key,
        }


@dataclass(frozen=True)
class LegacyField:
    """
    A field written before encryption was enabled.

    ``plaintext`` holds the bare string when the server sent one; it is None
    when the server sent an envelope-shaped object with missing/empty parts.
    """

    plaintext: Optional[str] = None


@dataclass(frozen=True)
class AbsentField:
    """The record has no value for this field."""


EncryptedField = Union[PopulatedField, LegacyField, AbsentField]


def classify_field(raw: Any) -> EncryptedField:
    """Decide once, at the boundary, which variant a wire value is."""
    if isinstance(raw, (PopulatedField, LegacyField, AbsentField)):
        return raw
    if raw is None:
        return AbsentField()
    if isinstance(raw, str):
        return LegacyField(plaintext=raw)
    if isinstance(raw, dict):
        parts = [raw.get("ciphertext"), raw.get("iv"), raw.get("encryptedKey")]
        if all(isinstance(p, str) and p for p in parts):
            return PopulatedField(ciphertext=parts[0], iv=parts[1], encrypted_key=parts[2])
        return LegacyField(plaintext=None)
    raise InvalidEnvelopeError(f"Unsupported field value of type {type(raw).__name__}")


class FieldStatus(Enum):
    # How a single field ended up after reveal
    DECRYPTED = "decrypted"
    PLAINTEXT = "plaintext"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"


UNAVAILABLE_PLACEHOLDER = "[could not decrypt]"


@dataclass(frozen=True)
class FieldResult:
    status: FieldStatus
    value: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not FieldStatus.UNAVAILABLE

    def render(self) -> str:
        """Text for display; an unavailable field never renders as blank."""
        if self.status is FieldStatus.UNAVAILABLE:
            return UNAVAILABLE_PLACEHOLDER
        return self.value or ""


# ----------------------------------------------------------------------
# Account material exchanged with the server
# ----------------------------------------------------------------------


class PkiStatus(Enum):
    # What the server told us about the account's key pair
    CONFIGURED = "configured"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LoginMaterial:
    """Returned by the credentials step; the master secret is not known yet."""

    salt: bytes
    public_jwk: Optional[Dict[str, Any]] = None
    wrapped_private_key: Optional[EncryptedEnvelope] = None
    pki_status: PkiStatus = PkiStatus.UNKNOWN
    kdf: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoginMaterial":
        """
        Build from the ``user`` object of a login response.

        An ``encryptedPrivateKey`` with empty arrays is treated as absent.
        ``pkiConfigured`` is the explicit server signal; without it the
        status is only CONFIGURED when a usable wrapped key is present.
        """
        salt = _to_bytes(data.get("salt"), "salt")

        wrapped = None
        raw_epk = data.get("encryptedPrivateKey")
        if raw_epk:
            envelope = EncryptedEnvelope.from_dict(raw_epk)
            if not envelope.is_empty:
                wrapped = envelope

        flag = data.get("pkiConfigured")
        if flag is True or wrapped is not None:
            status = PkiStatus.CONFIGURED
        elif flag is False:
            status = PkiStatus.NOT_CONFIGURED
        else:
            status = PkiStatus.UNKNOWN

        return cls(
            salt=salt,
            public_jwk=data.get("publicKey") or None,
            wrapped_private_key=wrapped,
            pki_status=status,
            kdf=data.get("kdf"),
        )


@dataclass(frozen=True)
class RegistrationBundle:
    """Everything the server stores for a new account; nothing here is secret."""

    salt: bytes
    auth_key_hash: str
    public_jwk: Dict[str, Any]
    wrapped_private_key: EncryptedEnvelope
    kdf: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salt": list(self.salt),
            "authKeyHash": self.auth_key_hash,
            "publicKey": self.public_jwk,
            "encryptedPrivateKey": self.wrapped_private_key.to_dict(),
            "kdf": self.kdf,
        }
