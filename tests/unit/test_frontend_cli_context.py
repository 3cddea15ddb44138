"""Unit tests for the CLI AppContext builder."""

from unittest.mock import patch
from cloakbox.core.config import CloakBoxSettings
from cloakbox.frontend.cli.context import build_context, read_master_secret
from cloakbox.network.adapter import InMemoryAccountBackend
from cloakbox.security.session import VaultState


def test_build_context_defaults():
    """Without arguments the in-memory backend and a locked session are wired up."""
    settings = CloakBoxSettings(_env_file=None, pbkdf2_iterations=1000, session_ttl_seconds=60)
    ctx = build_context(settings=settings)

    assert isinstance(ctx.backend, InMemoryAccountBackend)
    assert ctx.settings is settings
    assert ctx.session.state is VaultState.LOCKED
    assert not ctx.session.is_unlocked


def test_build_context_uses_given_backend():
    backend = InMemoryAccountBackend()
    ctx = build_context(backend=backend, settings=CloakBoxSettings(_env_file=None))
    assert ctx.backend is backend


def test_read_master_secret_from_env(monkeypatch):
    monkeypatch.setenv("CLOAKBOX_MASTER_PASSWORD", "from-env")
    with patch("cloakbox.frontend.cli.context.getpass.getpass") as prompt:
        assert read_master_secret() == "from-env"
        prompt.assert_not_called()


def test_read_master_secret_prompts(monkeypatch):
    monkeypatch.delenv("CLOAKBOX_MASTER_PASSWORD", raising=False)
    with patch("cloakbox.frontend.cli.context.getpass.getpass", return_value="typed") as prompt:
        assert read_master_secret("Secret: ") == "typed"
        prompt.assert_called_once_with("Secret: ")
