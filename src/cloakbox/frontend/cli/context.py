"""Small helper to build a CloakBox runtime context for the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import getpass
import os

from cloakbox.core.config import CloakBoxSettings, get_settings
from cloakbox.network.adapter import AccountBackend, InMemoryAccountBackend
from cloakbox.security.session import VaultSession


@dataclass
class AppContext:
    """Container for runtime objects the CLI needs."""

    settings: CloakBoxSettings
    backend: AccountBackend
    session: VaultSession


def build_context(
    backend: Optional[AccountBackend] = None,
    settings: Optional[CloakBoxSettings] = None,
) -> AppContext:
    """
    Wire settings, backend and a locked session together.

    Without a backend the in-memory one is used, which is what ``demo`` runs
    against.
    """
    settings = settings or get_settings()
    backend = backend or InMemoryAccountBackend()
    session = VaultSession(
        backend,
        kdf=settings.kdf_params(),
        key_size=settings.rsa_key_size,
        ttl_seconds=settings.session_ttl_seconds,
    )
    return AppContext(settings=settings, backend=backend, session=session)


def read_master_secret(prompt: str = "Master password: ") -> str:
    """
    Return the master secret from ``CLOAKBOX_MASTER_PASSWORD`` or a prompt.

    The environment variable exists for scripting; interactive use should
    rely on the prompt.
    """
    secret = os.getenv("CLOAKBOX_MASTER_PASSWORD")
    if secret:
        return secret
    return getpass.getpass(prompt)
