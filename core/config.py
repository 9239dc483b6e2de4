"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthKit happen here. No module should
call os.getenv() or os.environ.get() directly. Entry points (asgi.py, main.py)
call get_settings() once and hand the resulting Settings instance to
create_app(); every component below that receives the values it needs through
its constructor. Nothing inside auth/ or api/ looks configuration up on its own.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  frozen=True: Settings is immutable once constructed. A component holding a
      reference can rely on the values never changing under it.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the OAuth session cookie both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Tokens signed with a random per-process key would
       be invalidated on every restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkit.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true). Tests construct
    Settings(...) with keyword arguments, which take precedence over the
    environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = Field(default="", validate_default=True)
    log_level: str = "INFO"
    base_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///authkit.db"

    # ------------------------------------------------------------------
    # Tokens and passwords
    # ------------------------------------------------------------------

    # 7 days.
    token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    email_verify_expire_seconds: int = Field(default=24 * 3600, gt=0)
    password_min_length: int = Field(default=6, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # What to do when a provider-verified email already belongs to a
    # password account: attach the provider to it, or refuse with 409.
    oauth_email_policy: Literal["link", "reject"] = "link"
    # Empty = answer the callback with JSON instead of redirecting.
    oauth_success_redirect: str = ""
    oauth_failure_redirect: str = ""

    # ------------------------------------------------------------------
    # HTTP transport
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    secure_cookies: bool = False

    # 100 requests per 15 minutes per client IP.
    rate_limit: str = "100/15minutes"
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Verification mail (empty mail_api_url = log the link instead)
    # ------------------------------------------------------------------

    mail_api_url: str = ""
    mail_api_key: str = ""
    mail_from: str = "AuthKit <no-reply@localhost>"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str, info: ValidationInfo) -> str:
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].

        debug is declared before secret_key, so it is already validated and
        present in info.data when this runs.
        """
        if not value:
            if info.data.get("debug"):
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
                return secrets.token_hex(32)
            raise ValueError(
                "SECRET_KEY is required in production mode. "
                "Set SECRET_KEY in your environment or .env file. "
                "To run in development mode, set DEBUG=true."
            )
        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings singleton.

    Only entry points should call this. In tests, build Settings(...) directly
    and pass it to create_app(), or call get_settings.cache_clear() after
    changing the environment.
    """
    return Settings()
