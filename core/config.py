"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Explicit injection: the auth and analytics components never call
      get_settings() themselves. api/main.py reads the Settings object once at
      startup and passes the values into each component's constructor.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is
       left empty here and rejected by TokenIssuer with ConfigError when the
       app starts. The process never serves a request without a signing key.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, analytics/, or notify/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `max_login_attempts` from
    MAX_LOGIN_ATTEMPTS.
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
    # Empty string is the sentinel for "not configured". Dev mode fills it in;
    # production leaves it empty and TokenIssuer refuses to start.
    secret_key: str = ""

    # Empty string means "use the default SQLite file next to the store module".
    auth_db_url: str = ""
    analytics_db_url: str = ""

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 24 * 3600
    remember_me_expire_seconds: int = 30 * 24 * 3600
    reset_token_expire_seconds: int = 3600
    # Off by default: refresh is stateless and does not consult the session list.
    strict_refresh: bool = False

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    password_min_length: int = 6
    password_history_depth: int = 5
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    max_sessions: int = 10
    session_idle_hours: int = 24

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Risk scoring and reports
    # ------------------------------------------------------------------

    risk_lookback_hours: int = 24
    risk_max_addresses: int = 3
    risk_max_devices: int = 2
    risk_suspicious_threshold: int = 50
    analytics_default_days: int = 30
    suspicious_lookback_days: int = 7
    insights_window_hours: int = 24

    # ------------------------------------------------------------------
    # Email (optional -- empty host means "log instead of send")
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:3000"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: a missing key is left empty. TokenIssuer raises
            ConfigError at startup so the failure is eager and never reaches
            a client.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            return self
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
