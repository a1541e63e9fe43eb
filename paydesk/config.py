"""
PayDesk - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List

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
    app_name: str = "PayDesk"
    app_env: str = "development"
    debug: bool = False
    api_version: str = "v1"
    
    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./paydesk.db"
    database_echo: bool = False
    
    # ===========================================
    # REDIS / CELERY CONFIGURATION
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    
    # ===========================================
    # PAYROLL ENGINE
    # ===========================================
    currency: str = "NGN"
    currency_minor_unit: Decimal = Decimal("0.01")
    standard_monthly_hours: Decimal = Decimal("160")
    minimum_basic_salary: Decimal = Decimal("0")
    
    # Bulk runs
    batch_max_concurrency: int = 4
    calculation_claim_ttl_seconds: int = 300
    
    # Automated monthly payroll (Celery beat)
    automated_payroll_enabled: bool = False
    automated_payroll_day: int = 28
    automated_payroll_hour: int = 6
    
    # ===========================================
    # CORS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

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
    Uses lru_cache to avoid reading .env file multiple times.
    """
    return Settings()


settings = get_settings()
