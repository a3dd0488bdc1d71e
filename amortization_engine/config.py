"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class AmortizationConfig(BaseSettings):
    """Amortization engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="AMORTIZATION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Precision configuration
    internal_scale: int = 10      # Fractional digits for rates and factors
    presentation_scale: int = 2   # Fractional digits for amounts

    # Event rules
    max_skip_months: int = 12
    capitalize_grace_interest: bool = False  # Add grace-period interest to the balance

    # Calculation limits
    variable_rate_max_iterations: int = 100  # Bisection steps for variable-rate payment
    max_term_periods: int = 1200             # Upper bound for solved payoff counts

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout


# Global configuration instance
config = AmortizationConfig()


def get_config() -> AmortizationConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AmortizationConfig:
    """Reload configuration from environment"""
    global config
    config = AmortizationConfig()
    return config
