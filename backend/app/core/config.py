"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Subscription Tracker API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED (Celery broker and result backend)
    REDIS_URL: str

    # CORS
    CORS_ORIGINS: list[str] = []

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    TRACING_CONSOLE_EXPORT: bool = False

    # Reminder Settings
    DEFAULT_REMINDER_INTERVALS: list[int] = [30, 7, 3, 1]
    ALLOWED_REMINDER_INTERVALS: list[int] = [1, 2, 3, 7, 15, 30]
    REMINDER_SCAN_HOUR: int = 9

    # Dashboard Settings
    UPCOMING_WINDOW_DAYS: int = 7
    UPCOMING_LIST_DAYS: int = 30
    SPENDING_TREND_MONTHS: int = 6

    # Subscription limits
    MAX_BILLING_INTERVAL: int = 12
    MAX_PRICE: float = 999999.99

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
