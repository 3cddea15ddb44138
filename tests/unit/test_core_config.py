"""Unit tests for settings loading."""

import pytest
from pydantic import ValidationError

from cloakbox.core.config import CloakBoxSettings, get_settings
from cloakbox.security.kdf import ARGON2ID, DEFAULT_KDF, KdfParams


@pytest.fixture(autouse=True)
def clear_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(monkeypatch):
    for name in ("CLOAKBOX_KDF_ALGORITHM", "CLOAKBOX_PBKDF2_ITERATIONS", "CLOAKBOX_RSA_KEY_SIZE"):
        monkeypatch.delenv(name, raising=False)
    settings = CloakBoxSettings(_env_file=None)
    assert settings.kdf_params() == DEFAULT_KDF
    assert settings.rsa_key_size == 2048
    assert settings.session_ttl_seconds is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CLOAKBOX_PBKDF2_ITERATIONS", "600000")
    monkeypatch.setenv("CLOAKBOX_SESSION_TTL_SECONDS", "900")
    monkeypatch.setenv("CLOAKBOX_LOG_LEVEL", "debug")
    settings = get_settings()
    assert settings.kdf_params() == KdfParams(iterations=600000)
    assert settings.session_ttl_seconds == 900
    assert settings.log_level == "DEBUG"
    assert get_settings() is settings


def test_argon2_params(monkeypatch):
    monkeypatch.setenv("CLOAKBOX_KDF_ALGORITHM", "argon2id")
    monkeypatch.setenv("CLOAKBOX_ARGON2_MEMORY_COST", "32768")
    params = CloakBoxSettings(_env_file=None).kdf_params()
    assert params.algorithm == ARGON2ID
    assert params.memory_cost == 32768


@pytest.mark.parametrize("name,value", [
    ("CLOAKBOX_RSA_KEY_SIZE", "1024"),
    ("CLOAKBOX_LOG_LEVEL", "LOUD"),
    ("CLOAKBOX_KDF_ALGORITHM", "md5"),
])
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        CloakBoxSettings(_env_file=None)
