"""Application configuration using pydantic-settings.

Holds the KDF cost parameters applied to new wallet records, the
passphrase policy and per-action rate limit overrides.
"""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from peridot_vault.crypto import SCRYPT, KdfParams


class RateLimitRule(BaseModel):
    """Rate limit override for a single action (seconds)."""

    window_seconds: float
    max_attempts: int
    cooldown_seconds: Optional[float] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Key derivation
    # ======================
    kdf_algorithm: Literal["scrypt", "pbkdf2-sha256"] = Field(
        default=SCRYPT, description="KDF for new wallet records"
    )
    kdf_n: int = Field(default=16384, description="scrypt CPU/memory cost")
    kdf_r: int = Field(default=8, description="scrypt block size")
    kdf_p: int = Field(default=1, description="scrypt parallelization")
    kdf_iterations: int = Field(default=100000, description="PBKDF2 iterations")
    kdf_key_length: int = Field(default=32, description="Derived key length in bytes")

    # ======================
    # Wallet security
    # ======================
    vault_pepper: Optional[str] = Field(
        default=None, description="Server-side secret mixed into the basic-tier fallback key"
    )
    min_passphrase_length: int = Field(default=8, description="Minimum passphrase length")
    disclosure_ttl_seconds: float = Field(
        default=60.0, description="Delay before a key disclosure message is deleted"
    )
    lock_timeout_seconds: float = Field(
        default=30.0, description="Maximum wait for a per-user lock"
    )

    # ======================
    # Rate limiting
    # ======================
    rate_limit_overrides: dict[str, RateLimitRule] = Field(
        default_factory=dict, description="Per-action rate limit overrides (JSON)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def default_kdf_params(self) -> KdfParams:
        """KDF snapshot stamped onto newly created wallet records."""
        return KdfParams(
            algorithm=self.kdf_algorithm,
            n=self.kdf_n,
            r=self.kdf_r,
            p=self.kdf_p,
            iterations=self.kdf_iterations,
            length=self.kdf_key_length,
        )

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "vault_pepper": "***" if self.vault_pepper else "(not set)",
            "kdf": {
                "algorithm": self.kdf_algorithm,
                "n": self.kdf_n,
                "r": self.kdf_r,
                "p": self.kdf_p,
                "iterations": self.kdf_iterations,
                "key_length": self.kdf_key_length,
            },
            "min_passphrase_length": self.min_passphrase_length,
            "disclosure_ttl_seconds": self.disclosure_ttl_seconds,
            "rate_limit_overrides": sorted(self.rate_limit_overrides),
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging for the host process."""
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
