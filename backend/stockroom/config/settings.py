"""
Runtime settings for the Stockroom API.

All values come from environment variables so that the module can be
imported without any configuration present. Validation of required values
(e.g. JWT_SECRET) happens when the application is created, not at import.

Usage:
    from stockroom.config.settings import get_settings

    settings = get_settings()
    ttl = settings.access_token_ttl_seconds
"""

import os
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Access tokens live for 30 minutes, refresh tokens for 7 days
DEFAULT_ACCESS_TOKEN_TTL_SECONDS = 30 * 60
DEFAULT_REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60

DEFAULT_BILLING_LOOKUP_TIMEOUT_SECONDS = 2.0
DEFAULT_SUBSCRIPTION_EXTEND_DAYS = 30
DEFAULT_TRIAL_DAYS = 30

DEFAULT_PLAY_API_URL = "https://androidpublisher.googleapis.com/androidpublisher/v3"

# Bounds for control-plane queries issued from worker threads
DEFAULT_DATABASE_CONNECT_TIMEOUT_SECONDS = 5
DEFAULT_DATABASE_STATEMENT_TIMEOUT_MS = 5000

VALID_SAMESITE_VALUES = ("lax", "strict", "none")
DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid integer in environment, using default",
            extra={"variable": name, "default": default},
        )
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(
            "Invalid number in environment, using default",
            extra={"variable": name, "default": default},
        )
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def normalize_database_url(database_url: Optional[str]) -> Optional[str]:
    """
    Normalize a database URL for SQLAlchemy.

    Handles Render/Heroku style postgres:// URLs by converting them to
    postgresql://, which is the scheme SQLAlchemy requires.
    """
    if not database_url:
        return None
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


@dataclass(frozen=True)
class TenantStoreDefaults:
    """Shared connection defaults for per-tenant data stores."""

    host: str = "localhost"
    port: int = 5432
    username: Optional[str] = None
    password: Optional[str] = None
    sslmode: str = "require"


@dataclass(frozen=True)
class Settings:
    """
    Immutable application settings.

    Tests construct this directly; production code obtains it via
    get_settings(), which reads the environment once.
    """

    jwt_secret: str = ""
    access_token_ttl_seconds: int = DEFAULT_ACCESS_TOKEN_TTL_SECONDS
    refresh_token_ttl_seconds: int = DEFAULT_REFRESH_TOKEN_TTL_SECONDS

    # Cookie transport
    cookie_secure: bool = True
    cookie_samesite: str = "none"
    cookie_domain: Optional[str] = None
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS

    # Control-plane database (tenants, users, billing records)
    database_url: Optional[str] = None
    database_connect_timeout_seconds: int = DEFAULT_DATABASE_CONNECT_TIMEOUT_SECONDS
    database_statement_timeout_ms: int = DEFAULT_DATABASE_STATEMENT_TIMEOUT_MS

    # Billing
    billing_api_url: Optional[str] = None
    billing_lookup_timeout_seconds: float = DEFAULT_BILLING_LOOKUP_TIMEOUT_SECONDS
    billing_webhook_secret: Optional[str] = None
    subscription_extend_days: int = DEFAULT_SUBSCRIPTION_EXTEND_DAYS
    trial_days: int = DEFAULT_TRIAL_DAYS

    # Google Play subscription verification
    play_package_name: Optional[str] = None
    play_api_url: str = DEFAULT_PLAY_API_URL
    play_api_token: Optional[str] = None

    # Access policy (allowlist) YAML location
    access_policy_path: Optional[str] = None

    tenant_store: TenantStoreDefaults = field(default_factory=TenantStoreDefaults)

    def validate(self) -> None:
        """
        Validate settings required to serve requests.

        Raises:
            ValueError: If a required value is missing or inconsistent
        """
        if not self.jwt_secret:
            raise ValueError("JWT_SECRET environment variable is required")
        if self.access_token_ttl_seconds <= 0:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be positive")
        if self.access_token_ttl_seconds >= self.refresh_token_ttl_seconds:
            raise ValueError(
                "ACCESS_TOKEN_TTL_SECONDS must be shorter than REFRESH_TOKEN_TTL_SECONDS"
            )
        if self.cookie_samesite not in VALID_SAMESITE_VALUES:
            raise ValueError(
                f"COOKIE_SAMESITE must be one of {VALID_SAMESITE_VALUES}, "
                f"got {self.cookie_samesite!r}"
            )
        if self.cookie_samesite == "none" and not self.cookie_secure:
            # Browsers drop SameSite=None cookies that are not Secure
            raise ValueError("COOKIE_SAMESITE=none requires COOKIE_SECURE=true")
        if self.billing_lookup_timeout_seconds <= 0:
            raise ValueError("BILLING_LOOKUP_TIMEOUT_SECONDS must be positive")
        if self.trial_days <= 0:
            raise ValueError("TRIAL_DAYS must be positive")
        if self.database_statement_timeout_ms < 0:
            raise ValueError("DATABASE_STATEMENT_TIMEOUT_MS must not be negative")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            jwt_secret=os.getenv("JWT_SECRET", ""),
            access_token_ttl_seconds=_env_int(
                "ACCESS_TOKEN_TTL_SECONDS", DEFAULT_ACCESS_TOKEN_TTL_SECONDS
            ),
            refresh_token_ttl_seconds=_env_int(
                "REFRESH_TOKEN_TTL_SECONDS", DEFAULT_REFRESH_TOKEN_TTL_SECONDS
            ),
            cookie_secure=_env_bool("COOKIE_SECURE", True),
            cookie_samesite=os.getenv("COOKIE_SAMESITE", "none").strip().lower(),
            cookie_domain=os.getenv("COOKIE_DOMAIN") or None,
            cors_origins=_env_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
            database_url=normalize_database_url(os.getenv("DATABASE_URL")),
            database_connect_timeout_seconds=_env_int(
                "DATABASE_CONNECT_TIMEOUT_SECONDS", DEFAULT_DATABASE_CONNECT_TIMEOUT_SECONDS
            ),
            database_statement_timeout_ms=_env_int(
                "DATABASE_STATEMENT_TIMEOUT_MS", DEFAULT_DATABASE_STATEMENT_TIMEOUT_MS
            ),
            billing_api_url=os.getenv("BILLING_API_URL") or None,
            billing_lookup_timeout_seconds=_env_float(
                "BILLING_LOOKUP_TIMEOUT_SECONDS", DEFAULT_BILLING_LOOKUP_TIMEOUT_SECONDS
            ),
            billing_webhook_secret=os.getenv("BILLING_WEBHOOK_SECRET") or None,
            subscription_extend_days=_env_int(
                "SUBSCRIPTION_EXTEND_DAYS", DEFAULT_SUBSCRIPTION_EXTEND_DAYS
            ),
            trial_days=_env_int("TRIAL_DAYS", DEFAULT_TRIAL_DAYS),
            play_package_name=os.getenv("PLAY_PACKAGE_NAME") or None,
            play_api_url=os.getenv("PLAY_API_URL", DEFAULT_PLAY_API_URL),
            play_api_token=os.getenv("PLAY_API_TOKEN") or None,
            access_policy_path=os.getenv("ACCESS_POLICY_PATH") or None,
            tenant_store=TenantStoreDefaults(
                host=os.getenv("TENANT_DB_HOST", "localhost"),
                port=_env_int("TENANT_DB_PORT", 5432),
                username=os.getenv("TENANT_DB_USER") or None,
                password=os.getenv("TENANT_DB_PASSWORD") or None,
                sslmode=os.getenv("TENANT_DB_SSLMODE", "require"),
            ),
        )


_settings: Optional[Settings] = None
_settings_lock = Lock()


def get_settings() -> Settings:
    """
    Get the process-wide Settings instance.

    Returns:
        Settings read from the environment on first call
    """
    global _settings

    with _settings_lock:
        if _settings is None:
            _settings = Settings.from_env()
        return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings

    with _settings_lock:
        _settings = None
