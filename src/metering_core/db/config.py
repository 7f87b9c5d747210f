"""
Database settings for the metering store.

Production connects to PostgreSQL through the Cloud SQL Python Connector or a
direct ``DATABASE_URL``; tests point ``DATABASE_URL`` at SQLite (aiosqlite).
"""

from typing import Any, Dict, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ASYNC_DRIVER_PREFIXES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


class DatabaseConfig(BaseSettings):
    """
    Connection, pool and timeout settings read from the environment.

    ``DATABASE_URL`` wins over the individual ``DATABASE_*`` parts.
    """

    # Cloud SQL connector
    CLOUD_SQL_INSTANCE: Optional[str] = Field(default=None)  # project:region:instance
    USE_CLOUD_SQL_CONNECTOR: bool = Field(default=False)
    CLOUD_SQL_IP_TYPE: Literal["PUBLIC", "PRIVATE"] = Field(default="PUBLIC")

    # Credentials
    DATABASE_USER: str = Field(default="postgres")
    DATABASE_PASSWORD: str = Field(default="")
    DATABASE_NAME: str = Field(default="metering")
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Pool (PostgreSQL only)
    DB_POOL_SIZE: int = Field(default=5, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=1800)  # seconds
    DB_ECHO: bool = Field(default=False)

    # Upper bound for one metering operation, in seconds
    DB_OPERATION_TIMEOUT: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("CLOUD_SQL_IP_TYPE", mode="before")
    @classmethod
    def _upper_ip_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("DATABASE_URL")
    @classmethod
    def _async_driver(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        for prefix, replacement in _ASYNC_DRIVER_PREFIXES.items():
            if value.startswith(prefix):
                return replacement + value[len(prefix):]
        return value

    @property
    def uses_cloud_sql(self) -> bool:
        return self.USE_CLOUD_SQL_CONNECTOR and bool(self.CLOUD_SQL_INSTANCE)

    def get_connection_url(self) -> str:
        """SQLAlchemy async URL for a direct connection."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    def pool_options(self) -> Dict[str, Any]:
        """Engine keyword arguments for a pooled PostgreSQL engine."""
        return {
            "pool_size": self.DB_POOL_SIZE,
            "max_overflow": self.DB_MAX_OVERFLOW,
            "pool_timeout": self.DB_POOL_TIMEOUT,
            "pool_recycle": self.DB_POOL_RECYCLE,
            "pool_pre_ping": True,
        }


# Global config instance
db_config = DatabaseConfig()


def get_db_config() -> DatabaseConfig:
    """Fresh settings (re-reads the environment)."""
    return DatabaseConfig()
