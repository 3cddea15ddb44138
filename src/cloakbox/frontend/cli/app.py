"""
Command line front end for the CloakBox crypto core.

Commands:
  salt                                   -> print a fresh 16-byte salt (JSON byte array)
  verifier --salt S                      -> print the auth verifier hash for the master password
  keygen --salt S                        -> generate a key pair; print publicKey + encryptedPrivateKey
  encrypt-entry --salt S [--in FILE]     -> encrypt a JSON record into an entry envelope
  decrypt-entry --salt S [--in FILE]     -> decrypt an entry envelope back into JSON
  encrypt-field --public-key FILE TEXT   -> encrypt one string for a public key (JWK file)
  decrypt-field --salt S --wrapped FILE [--in FILE]
                                         -> unwrap the private key and decrypt one field
  demo                                   -> register, lock, log in and unlock against an in-memory server

Salts are accepted as hex or as a JSON byte array. The master password is read
from CLOAKBOX_MASTER_PASSWORD or prompted for.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from cloakbox.core.exceptions import CloakBoxError, FormatError, InvalidSaltError
from cloakbox.core.records import (
    decrypt_aliases,
    decrypt_events,
    encrypt_alias,
    encrypt_event_fields,
)
from cloakbox.frontend.cli.context import build_context, read_master_secret
from cloakbox.frontend.cli.logging_config import configure_logging
from cloakbox.security.crypto import decrypt_field, encrypt_field
from cloakbox.security.custody import establish_custody, unwrap_private_key
from cloakbox.security.encryption import decrypt_entry, encrypt_entry
from cloakbox.security.kdf import derive_auth_verifier, generate_salt, validate_salt

logger = logging.getLogger(__name__)


def _parse_salt(text: str) -> bytes:
    text = text.strip()
    try:
        if text.startswith("["):
            return validate_salt(json.loads(text))
        return validate_salt(bytes.fromhex(text))
    except ValueError as exc:
        if isinstance(exc, InvalidSaltError):
            raise
        raise InvalidSaltError("Salt must be hex or a JSON byte array") from exc


def _read_json(path: Optional[str]) -> Any:
    source = "stdin" if path in (None, "-") else path
    try:
        if path in (None, "-"):
            return json.load(sys.stdin)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as exc:
        raise FormatError(f"Cannot read {source}: {exc.strerror}") from exc
    except ValueError as exc:
        raise FormatError(f"{source} does not contain valid JSON") from exc


def _emit(obj: Any) -> None:
    json.dump(obj, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_salt(args, ctx) -> int:
    _emit({"salt": list(generate_salt())})
    return 0


def cmd_verifier(args, ctx) -> int:
    salt = _parse_salt(args.salt)
    secret = read_master_secret()
    _emit({"authKeyHash": derive_auth_verifier(secret, salt, ctx.settings.kdf_params())})
    return 0


def cmd_keygen(args, ctx) -> int:
    salt = _parse_salt(args.salt)
    secret = read_master_secret()
    bundle = establish_custody(secret, salt, ctx.settings.kdf_params(), ctx.settings.rsa_key_size)
    _emit({
        "publicKey": bundle.public_jwk,
        "encryptedPrivateKey": bundle.wrapped_private_key.to_dict(),
    })
    return 0


def cmd_encrypt_entry(args, ctx) -> int:
    salt = _parse_salt(args.salt)
    record = _read_json(args.input)
    secret = read_master_secret()
    _emit(encrypt_entry(record, secret, salt, ctx.settings.kdf_params()).to_dict())
    return 0


def cmd_decrypt_entry(args, ctx) -> int:
    salt = _parse_salt(args.salt)
    envelope = _read_json(args.input)
    secret = read_master_secret()
    _emit(decrypt_entry(envelope, secret, salt, ctx.settings.kdf_params()))
    return 0


def cmd_encrypt_field(args, ctx) -> int:
    public_jwk = _read_json(args.public_key)
    _emit(encrypt_field(args.text, public_jwk).to_dict())
    return 0


def cmd_decrypt_field(args, ctx) -> int:
    salt = _parse_salt(args.salt)
    wrapped = _read_json(args.wrapped)
    field = _read_json(args.input)
    secret = read_master_secret()
    private_key = unwrap_private_key(wrapped, secret, salt, ctx.settings.kdf_params())
    sys.stdout.write(decrypt_field(field, private_key) + "\n")
    return 0


async def _demo(ctx) -> int:
    session = ctx.session
    backend = ctx.backend
    secret = "correct horse battery staple"

    await session.register("demo@example.com", "login-password", secret)
    synced = await encrypt_alias(session, "alias-1", "quiet.otter@example.com", "example.com")
    event = encrypt_event_fields("Dentist", session.public_jwk, location="Main St 4")
    session.lock()

    await session.login("demo@example.com", "login-password")
    await session.unlock(secret)

    aliases = await decrypt_aliases(session, [
        {"_id": "1", "aliasId": synced.pop("id"), **synced},
        {"_id": "2", "aliasId": "alias-2", "ciphertext": [1, 2, 3], "iv": list(range(12))},
    ])
    events = await decrypt_events(session, [{"_id": "e1", "calendar": "c1", **event}])

    _emit({
        "accounts": sorted(backend.accounts),
        "aliases": [a.email for a in aliases.successes],
        "aliasFailures": [f.record_id for f in aliases.failures],
        "events": [
            {"title": e.title, "location": e.location.render(), "description": e.description.render()}
            for e in events.successes
        ],
    })
    session.lock()
    return 0


def cmd_demo(args, ctx) -> int:
    return asyncio.run(_demo(ctx))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cloakbox", description="CloakBox zero-knowledge crypto core")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("salt")
    p.set_defaults(func=cmd_salt)

    p = sub.add_parser("verifier")
    p.add_argument("--salt", required=True)
    p.set_defaults(func=cmd_verifier)

    p = sub.add_parser("keygen")
    p.add_argument("--salt", required=True)
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("encrypt-entry")
    p.add_argument("--salt", required=True)
    p.add_argument("--in", dest="input", default=None)
    p.set_defaults(func=cmd_encrypt_entry)

    p = sub.add_parser("decrypt-entry")
    p.add_argument("--salt", required=True)
    p.add_argument("--in", dest="input", default=None)
    p.set_defaults(func=cmd_decrypt_entry)

    p = sub.add_parser("encrypt-field")
    p.add_argument("--public-key", required=True)
    p.add_argument("text")
    p.set_defaults(func=cmd_encrypt_field)

    p = sub.add_parser("decrypt-field")
    p.add_argument("--salt", required=True)
    p.add_argument("--wrapped", required=True)
    p.add_argument("--in", dest="input", default=None)
    p.set_defaults(func=cmd_decrypt_field)

    p = sub.add_parser("demo")
    p.set_defaults(func=cmd_demo)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    ctx = build_context()
    configure_logging(args.log_level or ctx.settings.log_level)
    try:
        return args.func(args, ctx)
    except CloakBoxError as exc:
        logger.error("%s: %s", exc.__class__.__name__, exc)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
