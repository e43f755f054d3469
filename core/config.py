"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Larek happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation of the three secrets
      once every field has been resolved from the environment.

Security notes:
  [S1] Three independent secrets: one signs access tokens, one signs refresh
       tokens, one keys the HMAC that turns a raw refresh token into the
       session digest stored in the DB. They must differ pairwise, otherwise
       an access token could be replayed as a refresh token (or a DB dump
       plus one signing key would be enough to forge digests).

  [S2] Secrets shorter than 32 chars are rejected outright.

  [S3] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure. DEBUG=true generates random secrets with a
       warning; sessions then do not survive a restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("larek.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'larek_auth.db'}"

_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "session_digest_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Secrets -- empty string is the "not configured" sentinel [S3]
    # ------------------------------------------------------------------

    access_token_secret: str = ""
    refresh_token_secret: str = ""
    session_digest_secret: str = ""

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    # Access tokens cannot be revoked before expiry, so keep them short.
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 30 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # 12 rounds is roughly 100-250ms per check on current hardware.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [S1][S2][S3].

        Dev mode (DEBUG=true): each missing secret is replaced with a random
            one and a warning is logged.

        Production mode: refuse to start if any secret is missing.

        Both modes: reject short secrets and reused secrets.
        """
        for name in _SECRET_FIELDS:
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", name.upper())

        for name in _SECRET_FIELDS:
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        values = [getattr(self, name) for name in _SECRET_FIELDS]
        if len(set(values)) != len(values):
            raise ValueError(
                "ACCESS_TOKEN_SECRET, REFRESH_TOKEN_SECRET and SESSION_DIGEST_SECRET must all be different."
            )

        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
