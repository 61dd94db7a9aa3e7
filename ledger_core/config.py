"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class LedgerConfig(BaseSettings):
    """Account ledger configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory:// for ephemeral storage
    
    # Business rules configuration
    minimum_balance: Decimal = Decimal("500.00")  # Floor for withdrawals and transfer debits
    low_balance_threshold: Decimal = Decimal("1000.00")
    critical_balance_threshold: Decimal = Decimal("500.00")
    currency_symbol: str = "₹"
    
    # Balance monitoring configuration
    monitoring_enabled: bool = False
    monitoring_interval_seconds: float = 3600.0  # 1 hour
    
    # Notification configuration
    webhook_url: str = ""  # Empty = alerts are only logged
    webhook_timeout: float = 5.0
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout
    
    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False
    
    @field_validator("minimum_balance", "low_balance_threshold", "critical_balance_threshold")
    @classmethod
    def _non_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("Balance thresholds must be non-negative")
        return value
    
    @field_validator("monitoring_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Monitoring interval must be positive")
        return value
    
    @model_validator(mode="after")
    def _threshold_order(self) -> "LedgerConfig":
        if self.critical_balance_threshold >= self.low_balance_threshold:
            raise ValueError("critical_balance_threshold must be lower than low_balance_threshold")
        return self


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
