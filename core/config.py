"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AccountDesk happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. supabase_url -> SUPABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. SECRET_KEY signs the Starlette session
      cookie that carries PKCE code verifiers between an OAuth/email redirect
      and its callback.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or admin/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accountdesk.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'accountdesk.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    site_url: str = "http://localhost:8000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Identity provider (Supabase)
    # ------------------------------------------------------------------

    supabase_url: str = ""
    supabase_anon_key: str = ""
    # When set, access tokens are verified locally with HS256. When empty,
    # every token is checked against the provider's /user endpoint.
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    # ------------------------------------------------------------------
    # Application tables
    # ------------------------------------------------------------------

    # Supabase exposes its Postgres database directly; point DATABASE_URL at
    # it in production. The SQLite default keeps local development self-contained.
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    refresh_cookie_seconds: int = 30 * 24 * 3600
    recovery_session_seconds: int = 900

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Registration and sign-in options
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    # Comma-separated provider names enabled in the Supabase dashboard,
    # e.g. "github,google". Empty string hides the OAuth buttons.
    oauth_providers: str = ""

    # ------------------------------------------------------------------
    # Admin console
    # ------------------------------------------------------------------

    audit_log_page_size: int = 50

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            In-flight OAuth redirects will not survive a restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        self.site_url = self.site_url.rstrip("/")
        return self

    @property
    def enabled_oauth_providers(self) -> list[str]:
        return [p.strip().lower() for p in self.oauth_providers.split(",") if p.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
