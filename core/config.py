"""
core/config.py -- Centralized LoginGuard configuration via pydantic-settings.

All environment variable reads for LoginGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. max_sessions_per_principal -> MAX_SESSIONS_PER_PRINCIPAL).

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Implements the DEBUG-conditional SECRET_KEY rule: dev mode
      generates a key with a warning, production mode refuses to start.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. It signs every
  access assertion, so a short key weakens the whole session model.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure. A random per-process key would silently invalidate every
  outstanding access assertion on restart.

Layer rule: core/ is the kernel. This module may not import from otp/ or
sessions/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("loginguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'loginguard.db'}"


class Settings(BaseSettings):
    """LoginGuard settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Durations are plain seconds so the
    environment stays free of unit-suffix parsing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    max_sessions_per_principal: int = Field(default=2, ge=1)
    session_ttl_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)
    # False matches the reference behaviour: one refresh value per session,
    # valid until the session expires or is revoked.
    rotate_refresh_secrets: bool = False

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    code_ttl_seconds: int = Field(default=5 * 60, gt=0)
    code_length: int = Field(default=6, ge=4, le=10)
    # Country code prefixed to national numbers by core.phone.normalize_phone_number.
    default_country_code: str = Field(default="91", pattern=r"^[1-9]\d{0,2}$")

    # ------------------------------------------------------------------
    # Access assertions
    # ------------------------------------------------------------------

    access_ttl_seconds: int = Field(default=15 * 60, gt=0)
    token_issuer: str = "loginguard"
    token_audience: str = "loginguard-users"

    # ------------------------------------------------------------------
    # Hashing / maintenance
    # ------------------------------------------------------------------

    # bcrypt cost factor. Tests drop this to 4 to keep the suite fast.
    hash_rounds: int = Field(default=12, ge=4, le=31)
    sweep_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access assertions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Access tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
