"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. DEBUG mode generates a SECRET_KEY with a
      warning; production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key weakens every issued credential.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
users/, uploads/, cache/, jobs/, notifications/, or db/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("starterapi.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    List fields (allowed_origins, api_supported_versions, ...) are read from
    the environment as JSON arrays, e.g. ALLOWED_ORIGINS='["https://a.io"]'.
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
    environment: str = "development"
    app_version: str = "1.0.0"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///./starterapi.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    jwt_issuer: str = "starterapi"
    token_expire_seconds: int = 24 * 3600
    # Exactly one transport is inspected by the auth gate.
    token_transport: Literal["cookie", "header"] = "cookie"
    # A configured domain implies HTTPS: the cookie is then marked Secure.
    cookie_domain: str = ""
    cross_site_cookies: bool = False

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    cache_ttl: int = 3600
    cache_check_period: int = 600
    users_cache_ttl: int = 300

    # ------------------------------------------------------------------
    # File uploads
    # ------------------------------------------------------------------

    upload_dir: str = "uploads"
    upload_max_size: int = 10 * 1024 * 1024
    upload_allowed_extensions: list[str] = [".jpg", ".jpeg", ".png", ".gif", ".webp", ".pdf", ".txt", ".csv"]
    upload_allowed_types: list[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "text/csv",
    ]

    # ------------------------------------------------------------------
    # Background jobs (Celery on Redis)
    # ------------------------------------------------------------------

    redis_url: str = "redis://localhost:6379/0"
    # Off by default so a bare checkout runs without Redis; nothing is enqueued.
    jobs_enabled: bool = False
    # Run tasks inline in the calling process instead of on a worker.
    jobs_eager: bool = False

    # ------------------------------------------------------------------
    # Email (SMTP via aiosmtplib)
    # ------------------------------------------------------------------

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    # Implicit TLS (usually port 465). When false, STARTTLS is used if smtp_start_tls.
    smtp_use_tls: bool = False
    smtp_start_tls: bool = True
    smtp_timeout: float = 10.0
    email_from: str = "no-reply@localhost"
    # Base URL for links in password-reset and verification emails.
    client_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # API versioning
    # ------------------------------------------------------------------

    api_default_version: str = "1.0"
    api_version_header: str = "API-Version"
    api_supported_versions: list[str] = ["1.0"]
    api_deprecated_versions: list[str] = []
    api_sunset_date: str = ""

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    allowed_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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
    """Return the application Settings singleton.

    All modules should call get_settings() rather than constructing Settings()
    directly. In tests: call get_settings.cache_clear() between test cases if
    you need to inject different environment variables.
    """
    return Settings()
