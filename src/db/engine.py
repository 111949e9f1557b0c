"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with asyncpg driver for PostgreSQL.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# ── Session factory ──────────────────────────────────────────────────

# expire_on_commit=False: records stay readable after commit, which the
# status poller relies on when it keeps a detached invoice.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI — yields an async DB session, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity; create tables outside production (Alembic owns production)."""
    async with engine.begin() as conn:
        from src.models import Base

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Context manager for database lifecycle inside the FastAPI lifespan."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
