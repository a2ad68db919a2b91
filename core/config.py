"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Marquee happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. A bcrypt work factor below 12 is only accepted in debug mode,
      so a test or dev override can never leak into production unnoticed.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or catalog/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("marquee.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'marquee.db'}"

_ENVIRONMENTS = ("development", "staging", "production")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    env: str = "development"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Deadline for every store operation. Expiry surfaces as StoreTimeoutError.
    db_timeout_seconds: float = 3.0
    db_pool_size: int = 25
    db_max_overflow: int = 10
    db_pool_recycle_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    activation_token_ttl_seconds: int = 3 * 24 * 60 * 60
    authentication_token_ttl_seconds: int = 24 * 60 * 60
    # How often the background loop purges expired token rows.
    token_purge_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # SMTP (welcome / activation emails)
    # ------------------------------------------------------------------

    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = "Marquee <no-reply@marquee.local>"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_trusted_origins: list[str] = Field(default_factory=list)
    limiter_enabled: bool = True
    limiter_default: str = "120/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject unknown environments and unsafe bcrypt work factors.

        bcrypt accepts 4..31 rounds. Anything below 12 is only allowed when
        DEBUG=true (test suites lower it to keep hashing fast).
        """
        if self.env not in _ENVIRONMENTS:
            raise ValueError(f"ENV must be one of {', '.join(_ENVIRONMENTS)}.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.bcrypt_rounds < 12:
            if not self.debug:
                raise ValueError("BCRYPT_ROUNDS below 12 is only permitted with DEBUG=true.")
            logger.warning("WARNING: bcrypt work factor lowered to %d (debug mode).", self.bcrypt_rounds)
        if self.db_timeout_seconds <= 0:
            raise ValueError("DB_TIMEOUT_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
