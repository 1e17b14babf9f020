"""Database engine and session management for the Fulfillment Service"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.base import FulfillmentServiceBase
from .settings import get_settings


def _sqlite_engine_options() -> Dict[str, Any]:
    return {"connect_args": {"timeout": 60, "check_same_thread": False}}


def _postgres_engine_options(pool_size: int, max_overflow: int) -> Dict[str, Any]:
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": 45,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        # Failed transitions leave nothing behind on a pooled connection
        "pool_reset_on_return": "rollback",
        "connect_args": {"command_timeout": 30, "server_settings": {"jit": "off"}},
    }


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class FulfillmentServiceDatabaseManager:
    """Owns the async engine and session factory for one database URL."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 40,
    ) -> None:
        self.is_sqlite = database_url.startswith("sqlite")
        options = (
            _sqlite_engine_options()
            if self.is_sqlite
            else _postgres_engine_options(pool_size, max_overflow)
        )

        self.async_engine = create_async_engine(database_url, echo=echo, **options)
        if self.is_sqlite:
            event.listen(self.async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        # Services keep using entities after commit
        self.async_session_maker = async_sessionmaker(
            bind=self.async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def create_tables(self) -> None:
        async with self.async_engine.begin() as conn:
            await conn.run_sync(FulfillmentServiceBase.metadata.create_all, checkfirst=True)

    async def drop_tables(self) -> None:
        """Only used by the test suite."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(FulfillmentServiceBase.metadata.drop_all)

    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.async_session_maker() as session:
            yield session

    async def close(self) -> None:
        await self.async_engine.dispose()


settings = get_settings()
database_manager = FulfillmentServiceDatabaseManager(
    database_url=settings.TEST_DATABASE_URL or settings.FULFILLMENT_DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session from the process-wide manager."""
    async for session in database_manager.session():
        yield session
