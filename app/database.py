"""
NairaPay Core - Database Configuration

Async engine and session handling (SQLAlchemy 2.0). Production runs on
PostgreSQL through asyncpg; the test-suite uses in-memory SQLite through
aiosqlite, which does not accept pool sizing options.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict
import logging

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)


# Constraint names stay stable across PostgreSQL and SQLite
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Declarative base shared by every NairaPay model."""
    metadata = MetaData(naming_convention=convention)


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for create_async_engine suited to the driver."""
    options: Dict[str, Any] = {"echo": settings.database_echo}
    if make_url(database_url).get_backend_name() == "sqlite":
        return options
    options.update(
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    return options


engine = create_async_engine(settings.async_database_url, **engine_options(settings.async_database_url))

# Services commit their own units of work; objects stay usable afterwards
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

async_session_factory = async_session_maker


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        yield session


get_db = get_async_session


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Session for work outside a request (Celery tasks, scripts).

    Anything left uncommitted when the block raises is rolled back before
    the exception propagates.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            logger.warning("Rolling back background session after failure")
            await session.rollback()
            raise


async def init_db():
    """Create all tables. Used by the seed script and local development."""
    import app.models  # noqa: F401  registers every mapper on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()
