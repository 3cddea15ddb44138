"""
Record helpers for the alias, calendar, event and email payloads the server returns.

Aliases are symmetric entries. Calendars, events and emails carry hybrid
encrypted fields next to plaintext metadata (colours, timestamps) that the
server keeps in the clear.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric import rsa

from cloakbox.core.exceptions import FormatError, InvalidEnvelopeError
from cloakbox.core.models import (
    EncryptedEnvelope,
    FieldResult,
    LegacyField,
    PopulatedField,
    classify_field,
)
from cloakbox.security.batch import BatchResult
from cloakbox.security.crypto import PublicKeyLike, decrypt_field, encrypt_field, reveal_field
from cloakbox.security.encryption import decrypt_entry_with_key
from cloakbox.security.kdf import sha256_hex

DEFAULT_CALENDAR_COLOR = "#3b82f6"


def _require_dict(raw: Any, what: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise InvalidEnvelopeError(f"{what} must be an object")
    return raw


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise FormatError("Timestamp must be an ISO-8601 string")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise FormatError(f"Invalid timestamp: {value!r}") from exc


def _optional_text(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise FormatError(f"{name!r} must be a string")
    return value


def _flag(value: Any, name: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise FormatError(f"{name!r} must be a boolean")
    return value


def _reminders(value: Any) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
        raise FormatError("'reminders' must be a list of objects")
    return list(value)


def _required_text(raw: Any, private_key: rsa.RSAPrivateKey, name: str) -> str:
    # A required field must decrypt; only a bare legacy string passes through.
    value = classify_field(raw)
    if isinstance(value, PopulatedField):
        return decrypt_field(value, private_key)
    if isinstance(value, LegacyField) and value.plaintext is not None:
        return value.plaintext
    raise InvalidEnvelopeError(f"Required field {name!r} is missing")


# ----------------------------------------------------------------------
# Aliases
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class DecryptedAlias:
    id: str
    alias_id: Optional[str]
    email: str
    domain: Optional[str]
    created_at: Optional[datetime]


def alias_hash(alias_email: str) -> str:
    """Lookup hash the server indexes aliases by: SHA-256 of the local part."""
    return sha256_hex(alias_email.split("@")[0])


def build_alias_entry(alias_id: str, alias_email: str, domain: Optional[str] = None,
                      created_at: Optional[datetime] = None) -> Dict[str, Any]:
    """The plaintext record that gets encrypted as an alias entry."""
    created = created_at or datetime.now(timezone.utc)
    entry = {
        "id": alias_id,
        "email": alias_email,
        "type": "generated",
        "createdAt": created.isoformat(),
    }
    if domain:
        entry["domain"] = domain
    return entry


def build_alias_sync_payload(alias_id: str, alias_email: str, envelope: EncryptedEnvelope,
                             domain: Optional[str] = None) -> Dict[str, Any]:
    """
    One item of the alias sync request.

    The server stores the encrypted entry next to the lookup hash and, when
    given, the plaintext domain it routes mail for.
    """
    payload: Dict[str, Any] = {
        "id": alias_id,
        **envelope.to_dict(),
        "aliasHash": alias_hash(alias_email),
    }
    if domain:
        payload["domain"] = domain
    return payload


async def encrypt_alias(session, alias_id: str, alias_email: str,
                        domain: Optional[str] = None) -> Dict[str, Any]:
    """Encrypt a freshly generated alias under the vault key, ready to sync."""
    envelope = await session.encrypt_entry(build_alias_entry(alias_id, alias_email, domain))
    return build_alias_sync_payload(alias_id, alias_email, envelope, domain)


def decrypt_alias(raw: Dict[str, Any], key: bytes) -> DecryptedAlias:
    raw = _require_dict(raw, "Alias")
    entry = decrypt_entry_with_key({"ciphertext": raw.get("ciphertext"), "iv": raw.get("iv")}, key)
    if not isinstance(entry, dict) or not isinstance(entry.get("email"), str):
        raise FormatError("Alias entry has no email")
    return DecryptedAlias(
        id=str(raw.get("_id", "")),
        alias_id=_optional_text(raw.get("aliasId"), "aliasId"),
        email=entry["email"],
        domain=_optional_text(entry.get("domain"), "domain") or _optional_text(raw.get("domain"), "domain"),
        created_at=_parse_time(raw.get("createdAt")),
    )


# ----------------------------------------------------------------------
# Calendars and events
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class DecryptedCalendar:
    id: str
    user: Optional[str]
    name: str
    color: str
    is_default: bool
    is_visible: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class DecryptedEvent:
    id: str
    calendar_id: str
    calendar_color: str
    title: str
    description: FieldResult
    location: FieldResult
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    is_all_day: bool
    timezone: Optional[str]
    status: Optional[str]
    source_type: Optional[str]
    reminders: List[Dict[str, Any]] = field(default_factory=list)


def decrypt_calendar(raw: Dict[str, Any], private_key: rsa.RSAPrivateKey) -> DecryptedCalendar:
    raw = _require_dict(raw, "Calendar")
    return DecryptedCalendar(
        id=str(raw.get("_id", "")),
        user=_optional_text(raw.get("user"), "user"),
        name=_required_text(raw.get("name"), private_key, "name"),
        color=_optional_text(raw.get("color"), "color") or DEFAULT_CALENDAR_COLOR,
        is_default=_flag(raw.get("isDefault"), "isDefault", False),
        is_visible=_flag(raw.get("isVisible"), "isVisible", True),
        created_at=_parse_time(raw.get("createdAt")),
        updated_at=_parse_time(raw.get("updatedAt")),
    )


def decrypt_event(raw: Dict[str, Any], private_key: rsa.RSAPrivateKey) -> DecryptedEvent:
    """
    Decrypt an event. The title has to decrypt; description and location
    degrade to an unavailable FieldResult on their own.
    """
    raw = _require_dict(raw, "Event")

    # calendar may be populated or just an id
    calendar = raw.get("calendar")
    if isinstance(calendar, dict):
        calendar_id = str(calendar.get("_id", ""))
        calendar_color = _optional_text(calendar.get("color"), "color") or DEFAULT_CALENDAR_COLOR
    elif calendar is None or isinstance(calendar, str):
        calendar_id = calendar or ""
        calendar_color = DEFAULT_CALENDAR_COLOR
    else:
        raise FormatError("'calendar' must be an id or an object")

    return DecryptedEvent(
        id=str(raw.get("_id", "")),
        calendar_id=calendar_id,
        calendar_color=calendar_color,
        title=_required_text(raw.get("title"), private_key, "title"),
        description=reveal_field(raw.get("description"), private_key),
        location=reveal_field(raw.get("location"), private_key),
        start_time=_parse_time(raw.get("startTime")),
        end_time=_parse_time(raw.get("endTime")),
        is_all_day=_flag(raw.get("isAllDay"), "isAllDay", False),
        timezone=_optional_text(raw.get("timezone"), "timezone"),
        status=_optional_text(raw.get("status"), "status"),
        source_type=_optional_text(raw.get("sourceType"), "sourceType"),
        reminders=_reminders(raw.get("reminders")),
    )


def encrypt_event_fields(title: str, public_key: PublicKeyLike, description: str = "",
                         location: str = "") -> Dict[str, Any]:
    """Encrypted ``title``/``description``/``location`` for a create or update payload."""
    payload: Dict[str, Any] = {"title": encrypt_field(title, public_key).to_dict()}
    if description:
        payload["description"] = encrypt_field(description, public_key).to_dict()
    if location:
        payload["location"] = encrypt_field(location, public_key).to_dict()
    return payload


def encrypt_calendar_name(name: str, public_key: PublicKeyLike) -> Dict[str, str]:
    return encrypt_field(name, public_key).to_dict()


# ----------------------------------------------------------------------
# Emails
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class DecryptedEmail:
    id: str
    sender: Optional[str]
    recipient: Optional[str]
    subject: FieldResult
    body_plain: FieldResult
    body_html: FieldResult
    received_at: Optional[datetime]
    kind: Optional[str]


def decrypt_email(raw: Dict[str, Any], private_key: rsa.RSAPrivateKey) -> DecryptedEmail:
    """Mail received before encryption was enabled carries plain strings; they pass through."""
    raw = _require_dict(raw, "Email")
    return DecryptedEmail(
        id=str(raw.get("_id", "")),
        sender=_optional_text(raw.get("from"), "from"),
        recipient=_optional_text(raw.get("to"), "to"),
        subject=reveal_field(raw.get("subject"), private_key),
        body_plain=reveal_field(raw.get("bodyPlain"), private_key),
        body_html=reveal_field(raw.get("bodyHtml"), private_key),
        received_at=_parse_time(raw.get("receivedAt")),
        kind=_optional_text(raw.get("type"), "type"),
    )


# ----------------------------------------------------------------------
# Session batch wrappers
# ----------------------------------------------------------------------


async def decrypt_aliases(session, aliases: Sequence[Dict[str, Any]]) -> BatchResult:
    return await session.decrypt_with_vault_key(aliases, decrypt_alias, label="alias")


async def decrypt_calendars(session, calendars: Sequence[Dict[str, Any]]) -> BatchResult:
    return await session.decrypt_with_private_key(calendars, decrypt_calendar, label="calendar")


async def decrypt_events(session, events: Sequence[Dict[str, Any]]) -> BatchResult:
    return await session.decrypt_with_private_key(events, decrypt_event, label="event")


async def decrypt_emails(session, emails: Sequence[Dict[str, Any]]) -> BatchResult:
    return await session.decrypt_with_private_key(emails, decrypt_email, label="email")
