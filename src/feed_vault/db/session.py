# ABOUTME: Database engine and async session factory.
# ABOUTME: Manages SQLAlchemy async engine lifecycle, table creation and SQLite pragmas.

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from feed_vault.config import get_settings
from feed_vault.db.models import Base

log = structlog.get_logger()

_engine = None
_session_factory = None


def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(url: str) -> AsyncEngine:
    """Create an async engine with foreign key enforcement for SQLite."""
    engine = create_async_engine(url, echo=False)
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create all tables if they don't exist."""
    await create_tables(get_engine())
    log.info("database_initialized", url=get_settings().database_url)


async def close_db() -> None:
    """Dispose of the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        log.info("database_closed")
