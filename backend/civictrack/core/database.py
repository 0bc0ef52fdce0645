"""
Database configuration and session management.
"""

from typing import AsyncGenerator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from civictrack.core.config import settings


def async_database_url(raw_dsn: str) -> str:
    """Return an asyncpg-compatible DSN."""
    if raw_dsn.startswith("postgresql+asyncpg://"):
        return raw_dsn
    return raw_dsn.replace("postgresql://", "postgresql+asyncpg://", 1)


DATABASE_URL = async_database_url(str(settings.DATABASE_URL))

_engine_options = {
    "echo": settings.ENVIRONMENT == "development",
    "pool_pre_ping": True,
}
if settings.ENVIRONMENT == "test":
    _engine_options["poolclass"] = NullPool

engine = create_async_engine(DATABASE_URL, **_engine_options)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database with PostGIS extension."""
    # Ensure every model is registered on the metadata.
    import civictrack.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        await conn.run_sync(Base.metadata.create_all)
