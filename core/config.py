"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for PortalAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Implements the DEBUG-conditional
      SECRET_KEY logic and rejects unknown hash schemes and mail backends.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. It signs the
  SessionMiddleware cookie that carries OAuth state between redirect and
  callback.

  password_hash_scheme="md5" exists only for parity with legacy stored
  digests. It is unsalted and unsuitable for new deployments; the hasher
  logs a warning when it is selected.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("portalauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'portalauth.db'}"

HASH_SCHEMES = ("bcrypt", "md5")
MAIL_BACKENDS = ("log", "smtp", "sendgrid")


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
    auth_db_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "session_id"
    session_ttl_seconds: int = 7 * 24 * 60 * 60
    session_purge_interval_seconds: int = 24 * 60 * 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Credentials and password reset
    # ------------------------------------------------------------------

    password_hash_scheme: str = "bcrypt"
    reset_token_ttl_seconds: int = 60 * 60
    app_base_url: str = "http://localhost:5000"

    # ------------------------------------------------------------------
    # Mail delivery
    # ------------------------------------------------------------------

    mail_backend: str = "log"
    mail_from: str = "passwordreset@portalauth.local"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_tls: bool = True
    sendgrid_api_key: str = ""

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Rate limiting and registration
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    reset_rate_limit: str = "5/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            OAuth state cookies will not survive restart -- acceptable locally.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. OAuth state will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_choices(self) -> "Settings":
        """Reject unknown enum-like values and non-positive lifetimes at startup."""
        if self.password_hash_scheme not in HASH_SCHEMES:
            raise ValueError(f"PASSWORD_HASH_SCHEME must be one of {HASH_SCHEMES}, got {self.password_hash_scheme!r}")
        if self.mail_backend not in MAIL_BACKENDS:
            raise ValueError(f"MAIL_BACKEND must be one of {MAIL_BACKENDS}, got {self.mail_backend!r}")
        for name in ("session_ttl_seconds", "session_purge_interval_seconds", "reset_token_ttl_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive number of seconds.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
