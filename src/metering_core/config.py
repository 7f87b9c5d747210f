"""
Metering configuration from environment variables (prefix ``METERING_``).
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class MeteringConfig(BaseSettings):
    """Provider pricing and usage-warning settings."""

    # Provider pricing (currency-agnostic)
    PRICE_PER_TOKEN: Decimal = Field(default=Decimal("0.0000001"), ge=0)
    PRICE_PER_SECOND: Decimal = Field(default=Decimal("0.0025"), ge=0)
    PRICE_PER_MINUTE: Decimal = Field(default=Decimal("0.0085"), ge=0)
    PRICE_PER_CALL: Decimal = Field(default=Decimal("0.0075"), ge=0)

    # Percentage of a limit at which an "approaching" warning is raised
    USAGE_WARNING_THRESHOLD: float = Field(default=80.0, gt=0, le=100)

    model_config = SettingsConfigDict(
        env_prefix="METERING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Global config instance
metering_config = MeteringConfig()


def get_metering_config() -> MeteringConfig:
    """Get metering configuration (allows reloading from env)."""
    return MeteringConfig()
