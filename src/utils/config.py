"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    DATABASE_URL: str = "sqlite:///./accuracy.db"

    # Redis (Optional - only needed for distributed alert locks)
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "accuracy"

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Scoring
    ACCURACY_DEFAULT_MAX_AGE_HOURS: float = 48.0
    ACCURACY_ACCURATE_THRESHOLD: int = 70

    # Alerting
    ACCURACY_CONFIDENCE_ALERT_THRESHOLD: int = 80
    ACCURACY_FRESHNESS_ALERT_THRESHOLD: int = 70
    ACCURACY_STATUS_WINDOW_DAYS: int = 30

    # Alert locks: "memory" (single worker) or "redis" (shared)
    ALERT_LOCK_BACKEND: str = "memory"
    ALERT_LOCK_TIMEOUT_SECONDS: float = 10.0
    ALERT_LOCK_BLOCKING_TIMEOUT_SECONDS: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
