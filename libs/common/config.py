from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "test", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "marketplace"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Supabase
    # Default placeholder values keep local/test runs from failing when Supabase
    # credentials are not required. Real deployments should override via env.
    SUPABASE_URL: str = "http://localhost"
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Redis (ARQ worker + rate limit storage)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: Optional[str] = None  # falls back to REDIS_URL
    CHECKOUT_RATE_LIMIT: str = "10/minute"

    # Orders
    ORDER_NUMBER_PREFIX: str = "MP"
    RETURN_WINDOW_DAYS: int = 7

    # Cashback
    CASHBACK_PERCENTAGE: Decimal = Decimal("5.00")
    CASHBACK_EXPIRY_DAYS: int = 30

    # Settlements
    PLATFORM_COMMISSION_RATE: Decimal = Decimal("0.10")

    # Conflict retries at the HTTP boundary
    CONFLICT_RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 0.05

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
            if v.startswith("postgres://"):
                return v.replace("postgres://", "postgresql+psycopg://", 1)
        return v

    @field_validator("PLATFORM_COMMISSION_RATE")
    @classmethod
    def check_commission_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("PLATFORM_COMMISSION_RATE must be between 0 and 1")
        return v

    @field_validator("CASHBACK_PERCENTAGE")
    @classmethod
    def check_cashback_percentage(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("CASHBACK_PERCENTAGE must be between 0 and 100")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
