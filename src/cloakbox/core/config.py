"""
CloakBox configuration

All settings can be overridden via environment variables with the CLOAKBOX_ prefix
(or a local .env file), e.g. CLOAKBOX_PBKDF2_ITERATIONS=600000.

KDF settings only apply to accounts created with them; existing accounts carry
their own parameters from the server.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cloakbox.security.kdf import ARGON2ID, PBKDF2_SHA256, KdfParams


class CloakBoxSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CLOAKBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    kdf_algorithm: Literal["pbkdf2-sha256", "argon2id"] = Field(
        default=PBKDF2_SHA256,
        description="Key derivation function for new accounts",
    )
    pbkdf2_iterations: int = Field(default=310_000, ge=1)
    argon2_time_cost: int = Field(default=3, ge=1)
    argon2_memory_cost: int = Field(default=65536, ge=8)
    argon2_parallelism: int = Field(default=1, ge=1)

    rsa_key_size: int = Field(default=2048, description="RSA modulus size for new key pairs")

    session_ttl_seconds: Optional[float] = Field(
        default=None,
        description="Auto-lock an unlocked vault after this many seconds; None keeps it open until lock()",
    )

    log_level: str = Field(default="INFO")

    @field_validator("rsa_key_size")
    @classmethod
    def _check_rsa_key_size(cls, v: int) -> int:
        if v < 2048:
            raise ValueError("rsa_key_size must be at least 2048")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def kdf_params(self) -> KdfParams:
        if self.kdf_algorithm == ARGON2ID:
            return KdfParams(
                algorithm=ARGON2ID,
                time_cost=self.argon2_time_cost,
                memory_cost=self.argon2_memory_cost,
                parallelism=self.argon2_parallelism,
            )
        return KdfParams(iterations=self.pbkdf2_iterations)


@lru_cache()
def get_settings() -> CloakBoxSettings:
    return CloakBoxSettings()
