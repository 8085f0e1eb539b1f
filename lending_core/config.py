"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LendingConfig(BaseSettings):
    """Lending core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LENDING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///lending.db"  # or memory://

    # Business rules configuration
    flat_weekly_fee: Decimal = Decimal("50")  # Late fee per started week
    late_payment_penalty: int = 5  # Credit score points per late payment
    default_credit_score: int = 100
    max_credit_score: int = 100
    default_payment_method: str = "Cash"
    loan_code_prefix: str = "LN"
    payment_code_prefix: str = "PAY"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
