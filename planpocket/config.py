"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import List

from .currency import Currency


class PlanPocketConfig(BaseSettings):
    """PlanPocket application configuration"""

    # Storage configuration
    database_path: str = "planpocket.db"
    use_in_memory_storage: bool = False

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origins: List[str] = ["http://localhost:5173"]

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24 * 30
    jwt_algorithm: str = "HS256"
    password_min_length: int = 6

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    default_currency: str = "INR"
    recent_transactions_limit: int = 5

    # Feature flags
    enable_audit_logging: bool = True
    enable_rate_limiting: bool = True
    rate_limit_per_minute: int = 100

    @field_validator("default_currency")
    @classmethod
    def _known_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if code not in Currency.__members__:
            raise ValueError(f"Unsupported currency: {value}")
        return code

    @property
    def currency(self) -> Currency:
        """Currency used for rounding and new profiles"""
        return Currency[self.default_currency]

    class Config:
        env_prefix = "PLANPOCKET_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = PlanPocketConfig()


def get_config() -> PlanPocketConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PlanPocketConfig:
    """Reload configuration from environment"""
    global config
    config = PlanPocketConfig()
    return config
