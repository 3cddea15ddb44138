"""End-to-end vault flow against the in-memory account backend.

Covers a full account lifecycle: register on one device, sign in and unlock
on another, then decrypt the kinds of records the service stores.
"""

import pytest
from cloakbox.core.exceptions import AuthenticationError, KeyUnavailableError
from cloakbox.core.models import FieldStatus
from cloakbox.core.records import (
    alias_hash,
    build_alias_entry,
    decrypt_aliases,
    decrypt_calendars,
    decrypt_emails,
    decrypt_events,
    encrypt_calendar_name,
    encrypt_event_fields,
)
from cloakbox.network.adapter import InMemoryAccountBackend
from cloakbox.security.kdf import KdfParams, derive_auth_verifier, generate_salt
from cloakbox.security.session import VaultSession, VaultState

FAST = KdfParams(iterations=1000)
EMAIL = "owner@example.com"
PASSWORD = "login-password"
SECRET = "correct horse battery staple"


@pytest.mark.asyncio
async def test_register_then_unlock_on_second_device():
    backend = InMemoryAccountBackend()

    # first device registers and stores data
    laptop = VaultSession(backend, kdf=FAST)
    await laptop.register(EMAIL, PASSWORD, SECRET)
    entry = build_alias_entry("a-1", "brisk.heron@example.com", "example.com")
    envelope = await laptop.encrypt_entry(entry)
    calendar = {"_id": "c1", "name": encrypt_calendar_name("Personal", laptop.public_jwk), "color": "#ff0000"}
    event = {
        "_id": "e1",
        "calendar": {"_id": "c1", "color": "#ff0000"},
        "startTime": "2025-05-01T10:00:00Z",
        **encrypt_event_fields("Standup", laptop.public_jwk, description="Daily sync"),
    }
    mail = {
        "_id": "m1",
        "from": "news@example.org",
        "subject": (await laptop.encrypt_field("Weekly digest")).to_dict(),
        "bodyPlain": "sent before encryption",
    }
    laptop.lock()
    assert laptop.state is VaultState.LOCKED

    # second device signs in with the same backend
    phone = VaultSession(backend, kdf=KdfParams(iterations=5))
    await phone.login(EMAIL, PASSWORD)
    with pytest.raises(AuthenticationError):
        await phone.unlock("not the secret")
    assert phone.state is VaultState.LOCKED

    await phone.unlock(SECRET)
    assert phone.is_unlocked

    aliases = await decrypt_aliases(phone, [
        {"_id": "1", "aliasId": "a-1", "aliasHash": alias_hash(entry["email"]), **envelope.to_dict()},
    ])
    assert [a.email for a in aliases.successes] == ["brisk.heron@example.com"]

    calendars = await decrypt_calendars(phone, [calendar])
    assert calendars.successes[0].name == "Personal"

    events = await decrypt_events(phone, [event])
    decrypted = events.successes[0]
    assert decrypted.title == "Standup"
    assert decrypted.description.value == "Daily sync"
    assert decrypted.location.status is FieldStatus.EMPTY
    assert decrypted.calendar_color == "#ff0000"

    emails = await decrypt_emails(phone, [mail])
    message = emails.successes[0]
    assert message.subject.value == "Weekly digest"
    assert message.body_plain.status is FieldStatus.PLAINTEXT
    assert message.body_plain.value == "sent before encryption"

    phone.lock()
    with pytest.raises(KeyUnavailableError):
        await phone.decrypt_entry(envelope)


@pytest.mark.asyncio
async def test_pre_pki_account_gets_key_pair_on_first_unlock():
    backend = InMemoryAccountBackend()
    salt = generate_salt()
    backend.add_account(
        EMAIL, PASSWORD, salt, derive_auth_verifier(SECRET, salt, FAST),
        kdf={"algo": "pbkdf2-sha256", "iterations": 1000},
    )

    session = VaultSession(backend)
    await session.login(EMAIL, PASSWORD)
    await session.unlock(SECRET)
    stored = backend.accounts[EMAIL]
    assert stored["encryptedPrivateKey"] is not None
    assert stored["publicKey"] == session.public_jwk

    field = await session.encrypt_field("kept")
    session.lock()

    # next sign-in unwraps the stored pair instead of generating another
    again = VaultSession(backend)
    await again.login(EMAIL, PASSWORD)
    await again.unlock(SECRET)
    assert again.public_jwk == stored["publicKey"]
    assert await again.decrypt_field(field) == "kept"
