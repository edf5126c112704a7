"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keystone happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates missing signing secrets
      with a warning, production mode refuses to start without them.

  TokenConfig: the token issuer never sees Settings. api/main.py calls
      Settings.token_config() once at startup and injects the frozen result.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright.
  The access, refresh and session secrets must all differ, otherwise a
  refresh token would verify as an access token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keystone.config")

_MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class TokenConfig:
    """Immutable signing configuration handed to auth.tokens.TokenIssuer."""

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_expire_seconds: int = 15 * 60
    refresh_expire_seconds: int = 7 * 24 * 3600


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
    database_url: str = "sqlite:///keystone.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    # Signs the Starlette session cookie that carries OAuth state.
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Sessions and passwords
    # ------------------------------------------------------------------

    session_ttl_hours: int = 168
    session_purge_interval_seconds: int = 6 * 60 * 60
    bcrypt_rounds: int = 12
    password_reset_ttl_minutes: int = 60
    # None means "secure unless DEBUG" -- resolved in the validator.
    secure_cookies: Optional[bool] = None
    # Role name attached to self-registered accounts when it exists.
    default_role: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    password_reset_rate_limit: str = "5/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""
    oauth_success_redirect: str = "/"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any secret is missing.

        Both modes: reject secrets shorter than 32 characters and any two
            secrets that are equal.
        """
        for field in ("jwt_secret", "jwt_refresh_secret", "session_secret"):
            if getattr(self, field):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", field.upper())
        configured = (self.jwt_secret, self.jwt_refresh_secret, self.session_secret)
        if any(len(value) < _MIN_SECRET_LENGTH for value in configured):
            raise ValueError("JWT_SECRET, JWT_REFRESH_SECRET and SESSION_SECRET must be at least 32 characters.")
        if len(set(configured)) != len(configured):
            raise ValueError("JWT_SECRET, JWT_REFRESH_SECRET and SESSION_SECRET must all differ.")
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        return self

    def token_config(self) -> TokenConfig:
        return TokenConfig(
            access_secret=self.jwt_secret,
            refresh_secret=self.jwt_refresh_secret,
            algorithm=self.jwt_algorithm,
            access_expire_seconds=self.access_token_expire_minutes * 60,
            refresh_expire_seconds=self.refresh_token_expire_days * 24 * 3600,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
