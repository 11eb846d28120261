"""
Database utilities and connection management
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from utils.config import get_config

# Imported for its side effect of registering every table on SQLModel.metadata
import models.database  # noqa: F401


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _normalize_url(url: str) -> str:
    """Force an async driver onto plain PostgreSQL URLs"""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    """Create the async engine on first use"""
    global _engine, _session_factory
    if _engine is None:
        config = get_config()
        _engine = create_async_engine(
            _normalize_url(config.database_url),
            echo=config.environment == "development" and config.log_level.upper() == "DEBUG",
            pool_pre_ping=not config.database_url.startswith("sqlite"),
        )
        _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _engine


def configure_engine(engine: AsyncEngine) -> None:
    """Bind the session factory to an externally created engine (tests, scripts)"""
    global _engine, _session_factory
    _engine = engine
    _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Initialize database tables"""
    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_db():
    """Close pooled connections on shutdown"""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get database session"""
    get_engine()
    async with _session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
