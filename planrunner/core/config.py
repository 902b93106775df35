from pydantic_settings import BaseSettings
from pydantic import ConfigDict, computed_field
from typing import Optional
import os
import logging


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "planrunner"
    APP_ENV: str = "development"
    APP_HOST: str = "0.0.0.0"
    # Hosting platforms may provide PORT dynamically - use it if available
    APP_PORT: int = int(os.getenv("PORT", "8000"))
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Optional[str] = None  # "console" or "json"; defaults by APP_ENV
    DEBUG: bool = False

    # Comma-separated list of browser origins allowed to call the API
    CORS_ORIGINS: str = "http://localhost:3000"

    # Redis
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Plan store
    PLAN_STORE_BACKEND: str = "memory"  # memory | redis
    PLAN_STORE_KEY_PREFIX: str = "planrunner:threads"

    # Execution
    # No bound by default: a hung handler blocks its run until it returns
    STEP_TIMEOUT_SECONDS: Optional[float] = None

    # Cancel requests routed to another instance are relayed through Redis
    CROSS_INSTANCE_CANCEL: bool = False
    CANCEL_FLAG_TTL_SECONDS: int = 3600
    CANCEL_FLAG_KEY_PREFIX: str = "planrunner:plan:cancel"

    # Security
    SECRET_KEY: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    DEV_AUTH_BYPASS: bool = False
    DEV_AUTH_BYPASS_TOKEN: Optional[str] = None

    @computed_field
    @property
    def log_format(self) -> str:
        """Resolved log renderer: console in development, json elsewhere."""
        if self.LOG_FORMAT:
            return self.LOG_FORMAT.lower()
        return "console" if self.APP_ENV == "development" else "json"

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow"  # Allow extra environment variables that aren't defined in the model
    )


settings = Settings()

_logger = logging.getLogger(__name__)

# Known insecure default secret patterns
_INSECURE_SECRET_PATTERNS = [
    "change-this-in-production",
    "changeme",
    "secret",
    "password",
    "your-secret-key",
]


def validate_secrets() -> None:
    """Validate that SECRET_KEY is set and not an insecure default.

    In production (APP_ENV != 'development'), raises RuntimeError if
    SECRET_KEY is None or matches a known insecure pattern.

    In development, logs a warning for the same conditions.
    """
    secret = settings.SECRET_KEY
    issues = []

    if secret is None:
        issues.append("SECRET_KEY is not set (None)")
    elif secret.lower() in _INSECURE_SECRET_PATTERNS or len(secret) < 16:
        issues.append("SECRET_KEY uses an insecure default or is too short (<16 chars)")

    if not issues:
        return

    message = "JWT secret validation failed:\n" + "\n".join(f"  - {issue}" for issue in issues)
    if settings.APP_ENV != "development":
        raise RuntimeError(message)
    _logger.warning("SECURITY WARNING (development mode): %s", message)


def is_dev_auth_bypass_allowed() -> bool:
    """Check if DEV_AUTH_BYPASS should be honored at request time.

    Returns True only when ALL conditions are met:
    1. APP_ENV is 'development'
    2. DEV_AUTH_BYPASS is true
    3. DEV_AUTH_BYPASS_TOKEN is set (non-empty)
    """
    if settings.APP_ENV != "development":
        return False
    if not settings.DEV_AUTH_BYPASS:
        return False
    if not settings.DEV_AUTH_BYPASS_TOKEN:
        return False
    return True
