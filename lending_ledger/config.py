"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from enum import Enum
from typing import Optional

from pydantic_settings import BaseSettings


class OverpaymentPolicy(str, Enum):
    """What the allocator does with a payment larger than the loan balance"""
    ALLOW = "allow"     # Record it and let the loan balance go negative
    REJECT = "reject"   # Refuse the payment before anything is written


class LedgerConfig(BaseSettings):
    """Lending ledger configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory:// for in-memory storage
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr
    
    # Business rules configuration
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.ALLOW
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


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
