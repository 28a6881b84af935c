"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Market happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL).

  @model_validator(mode="after"): Cross-field checks on the session cookie and
      expiry policy. Dev mode relaxes the __Host- cookie rule with a warning,
      production mode refuses to start.

Security notes:
  A cookie carrying the __Host- prefix is only accepted by browsers when it is
  Secure, has Path=/ and no Domain. Running it without Secure silently loses
  the session on every request, so the combination is rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("market.config")

_HOST_PREFIX = "__Host-"
_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'market_auth.db'}"


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
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Driver-level statement/lock timeout. Also bounds the background
    # superseded-session update, which has no request to inherit one from.
    database_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    session_cookie_name: str = "__Host-Market-SID"
    session_renewal_seconds: int = 3600
    ephemeral_session_days: int = 30
    persistent_session_days: int = 365
    login_grace_seconds: int = 60
    background_task_timeout_seconds: float = 5.0
    # Rotation inserts a new row. When true, the superseded row gets the same
    # grace window as a pre-login session instead of living until its own expiry.
    expire_superseded_on_rotate: bool = True
    # 0 disables the in-process sweep; an external scheduler can then run
    # `python main.py tasks cleanup-sessions`.
    session_sweep_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_session_policy(self) -> "Settings":
        """Reject cookie and expiry combinations that cannot work.

        Dev mode (DEBUG=true): a __Host- cookie without Secure has its prefix
            stripped with a warning, so plain-http local servers keep working.

        Production mode: the same combination is a hard startup failure.

        Both modes: the renewal threshold must be shorter than the shortest
            session horizon, and bcrypt rounds must be within the range the
            library accepts.
        """
        if self.session_cookie_name.startswith(_HOST_PREFIX) and not self.secure_cookies:
            if self.debug:
                self.session_cookie_name = self.session_cookie_name[len(_HOST_PREFIX) :]
                logger.warning(
                    "WARNING: SECURE_COOKIES is off; using cookie name %r without the %s prefix.",
                    self.session_cookie_name,
                    _HOST_PREFIX,
                )
            else:
                raise ValueError(
                    f"SESSION_COOKIE_NAME with the {_HOST_PREFIX} prefix requires SECURE_COOKIES=true. "
                    "To run over plain http, set DEBUG=true."
                )
        if not self.session_cookie_name:
            raise ValueError("SESSION_COOKIE_NAME must not be empty.")
        if self.session_renewal_seconds <= 0:
            raise ValueError("SESSION_RENEWAL_SECONDS must be positive.")
        if self.session_renewal_seconds >= self.ephemeral_session_days * 86400:
            raise ValueError("SESSION_RENEWAL_SECONDS must be shorter than EPHEMERAL_SESSION_DAYS.")
        if self.persistent_session_days < self.ephemeral_session_days:
            raise ValueError("PERSISTENT_SESSION_DAYS must not be shorter than EPHEMERAL_SESSION_DAYS.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
