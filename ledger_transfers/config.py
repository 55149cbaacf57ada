"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Ledger transfer service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
    )

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite://..., postgresql://...
    database_pool_min: int = 1
    database_pool_max: int = 10
    database_timeout: float = 30.0  # seconds to wait for a transaction lock or pooled connection

    # Money configuration
    balance_scale: int = 5  # decimal places persisted for every balance

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3333

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config
