"""
NairaPay Core - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "NairaPay Core"
    app_env: str = "development"
    debug: bool = True
    api_version: str = "v1"

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "nairapay_core"
    database_url_async: str = ""
    database_echo: bool = False
    database_pool_size: int = 5
    database_max_overflow: int = 10

    @property
    def async_database_url(self) -> str:
        """Explicit URL wins; otherwise built from the postgres_* fields."""
        if self.database_url_async:
            return self.database_url_async
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ===========================================
    # REDIS / CELERY CONFIGURATION
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"

    # ===========================================
    # PAYROLL DEFAULTS
    # ===========================================
    default_jurisdiction: str = "NG"
    payroll_owner_approval_threshold: Decimal = Decimal("5000000.00")
    payroll_calculation_workers: int = 4
    standard_hours_per_week: Decimal = Decimal("40")
    default_overtime_threshold_hours: Decimal = Decimal("40")
    default_overtime_multiplier: Decimal = Decimal("1.5")
    default_pension_employee_rate: Decimal = Decimal("8")
    default_pension_employer_rate: Decimal = Decimal("10")
    default_nhf_rate: Decimal = Decimal("2.5")
    default_nhf_employer_rate: Optional[Decimal] = None

    # ===========================================
    # WAGE ADVANCE POLICY
    # ===========================================
    wage_advance_max_percentage: Decimal = Decimal("30")
    wage_advance_max_active: int = 1
    wage_advance_default_installments: int = 1
    wage_advance_max_installments: int = 12

    # ===========================================
    # PURCHASE ORDER POLICY
    # ===========================================
    purchase_order_default_payment_terms_days: int = 30

    # ===========================================
    # CORS SETTINGS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:8000,http://127.0.0.1:8000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
