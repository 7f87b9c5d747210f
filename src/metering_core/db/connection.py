"""
Async database connection management.

DatabaseManager owns one AsyncEngine and hands out transactional sessions.
It is constructed explicitly and injected into the services that need it;
the module-level ``db`` instance only exists for application wiring and the
FastAPI-style ``get_session`` dependency.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from metering_core.db.config import DatabaseConfig, db_config
from metering_core.models.base import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite leaves foreign key enforcement off per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """
    Async PostgreSQL connection manager (Cloud SQL + direct).

    SQLite URLs (``sqlite+aiosqlite://``) are accepted for local development
    and tests.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        url: Optional[str] = None,
        operation_timeout: Optional[float] = None,
    ):
        self.config = config or db_config
        self._explicit_url = url is not None
        self.url = url or self.config.get_connection_url()
        self.operation_timeout = (
            operation_timeout
            if operation_timeout is not None
            else self.config.DB_OPERATION_TIMEOUT
        )
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connector: Any = None
        self._init_lock: Optional[asyncio.Lock] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager is not initialized")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def initialize(self) -> None:
        """Create the engine on first use."""
        if self._engine is not None:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._engine is not None:
                return
            if self.config.uses_cloud_sql and not self._explicit_url:
                self._engine = await self._create_cloud_sql_engine()
            else:
                self._engine = create_async_engine(self.url, **self._engine_kwargs())
                if self._engine.dialect.name == "sqlite":
                    event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
            self._session_factory = async_sessionmaker(
                self._engine, expire_on_commit=False
            )
            logger.info(f"Database engine initialized (dialect={self._engine.dialect.name})")

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.config.DB_ECHO}
        if self.url.startswith("postgresql"):
            kwargs.update(self.config.pool_options())
            kwargs["connect_args"] = {"command_timeout": self.operation_timeout}
        return kwargs

    async def _create_cloud_sql_engine(self) -> AsyncEngine:
        """Build an engine that connects through the Cloud SQL Python Connector."""
        from google.cloud.sql.connector import IPTypes, create_async_connector

        self._connector = await create_async_connector()
        ip_type = IPTypes.PRIVATE if self.config.CLOUD_SQL_IP_TYPE == "PRIVATE" else IPTypes.PUBLIC

        async def getconn():
            return await self._connector.connect_async(
                self.config.CLOUD_SQL_INSTANCE,
                "asyncpg",
                user=self.config.DATABASE_USER,
                password=self.config.DATABASE_PASSWORD,
                db=self.config.DATABASE_NAME,
                ip_type=ip_type,
                command_timeout=self.operation_timeout,
            )

        return create_async_engine(
            "postgresql+asyncpg://",
            async_creator=getconn,
            echo=self.config.DB_ECHO,
            **self.config.pool_options(),
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Transactional session scope.

        Commits when the block exits normally and rolls back on any error,
        so an operation either fully applies or not at all.
        """
        await self.initialize()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables (development and tests; production uses Alembic)."""
        await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and connector."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        if self._connector is not None:
            await self._connector.close_async()
            self._connector = None


# Application-level instance (services receive it explicitly)
db = DatabaseManager()


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency injection helper."""
    async with db.session() as session:
        yield session
