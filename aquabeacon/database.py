"""
Database engine and session handling.

Postgres through asyncpg in deployment; any SQLAlchemy async URL works, which
is how the tests run against SQLite.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from aquabeacon.config import settings

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Database not configured. Set DATABASE_URL environment variable."


def get_database_url() -> str:
    """DATABASE_URL with any sslmode parameter removed; asyncpg takes ssl via connect_args."""
    url = settings.database_url
    if not url:
        return ""

    base, _, query = url.partition("?")
    params = [p for p in query.split("&") if p and not p.startswith("sslmode=")]
    return f"{base}?{'&'.join(params)}" if params else base


def create_engine_if_configured() -> Optional[AsyncEngine]:
    """Engine for DATABASE_URL, or None so the app can still start without one."""
    db_url = get_database_url()
    if not db_url:
        logger.warning("DATABASE_URL not configured. Payment persistence disabled.")
        return None

    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=settings.debug)

    return create_async_engine(
        db_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args={"ssl": settings.is_production},
    )


engine = create_engine_if_configured()

async_session_maker = (
    async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if engine
    else None
)


class Base(DeclarativeBase):
    """Declarative base for the users and payments tables."""


@asynccontextmanager
async def _session_scope(factory: Optional[async_sessionmaker]) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit if the body finishes, roll back if it raises."""
    if factory is None:
        raise RuntimeError(NOT_CONFIGURED)

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: a session per request."""
    async with _session_scope(async_session_maker) as session:
        yield session


def get_session_factory() -> Optional[async_sessionmaker]:
    """FastAPI dependency for work that runs after the response, e.g. webhook processing."""
    return async_session_maker


def get_db_context(
    session_factory: Optional[async_sessionmaker] = None,
):
    """Session context manager for workers and background tasks."""
    return _session_scope(session_factory or async_session_maker)


async def init_db() -> None:
    """Create tables directly; development only, deployments use Alembic."""
    if not engine:
        logger.info("Skipping table creation - DATABASE_URL not configured")
        return

    import aquabeacon.models  # noqa: F401  registers tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    if engine:
        await engine.dispose()
