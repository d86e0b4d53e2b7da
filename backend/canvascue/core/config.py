"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "CanvasCue"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./canvascue.db"
    DATABASE_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None
    TRACE_CONSOLE_EXPORT: bool = False

    # Stripe - REQUIRED for billing provider calls
    STRIPE_SECRET_KEY: str = ""
    APP_URL: str = "http://localhost:3000"

    # Billing provider resilience
    BILLING_PROVIDER_TIMEOUT_SECONDS: float = 10.0
    BILLING_RETRY_MAX_ATTEMPTS: int = 3
    BILLING_RETRY_INITIAL_DELAY_SECONDS: float = 0.5
    BILLING_RETRY_MAX_DELAY_SECONDS: float = 8.0
    BILLING_RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # Usage accounting
    USAGE_CAS_MAX_ATTEMPTS: int = 3

    # Subscription reminders
    EXPIRING_SOON_DAYS: int = 7

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
