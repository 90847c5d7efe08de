"""
core/config.py -- Centralized configuration for sessiongate via pydantic-settings.

All environment variable reads for both services (auth core and gateway)
happen here. No module should call os.getenv() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. secret_key -> SECRET_KEY, frontend_url -> FRONTEND_URL).

  @model_validator(mode="after"): DEBUG-conditional SECRET_KEY policy. Dev
      mode generates a key with a warning; production refuses to start.

SECRET_KEY signs the short-lived state cookie authlib needs between the
provider redirect and the callback. Session tokens themselves are opaque
random strings and are not signed.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or gateway/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'sessiongate.db'}"

SEVEN_DAYS = 7 * 24 * 60 * 60

# The one cookie both services agree on. The gateway sets it; the auth
# service reads it from requests the gateway forwards.
SESSION_COOKIE = "session_token"


class Settings(BaseSettings):
    """Settings shared by the auth service and the gateway.

    All fields have defaults so Settings() can be instantiated in tests
    without a .env file. The model_validator enforces the SECRET_KEY rules.
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
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions and credentials
    # ------------------------------------------------------------------

    # Development posture. Must be true in any deployment served over TLS.
    secure_cookies: bool = False
    session_ttl_seconds: int = SEVEN_DAYS
    session_cookie_max_age: int = SEVEN_DAYS
    verification_code_ttl_seconds: int = 10 * 60
    bcrypt_rounds: int = 12
    health_timeout_seconds: float = 1.0

    # ------------------------------------------------------------------
    # Email delivery (Resend). Empty key selects the logging mailer.
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    mail_from: str = "Accounts <no-reply@localhost>"

    # ------------------------------------------------------------------
    # External identity providers (empty string means disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    gateway_url: str = "http://localhost:8000"
    auth_service_url: str = "http://localhost:3060"
    backend_service_url: str = "http://localhost:5000"
    frontend_url: str = "http://localhost:3000"
    frontend_landing_path: str = "/avatar"
    upstream_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            In-flight OAuth redirects will not survive a restart.

        Production mode: refuse to start without SECRET_KEY, and reject keys
            shorter than 32 characters in both modes.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. OAuth state will not persist across restarts.")
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

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
