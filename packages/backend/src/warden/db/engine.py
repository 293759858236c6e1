"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

Every auth flow runs inside one request-scoped session, so a service's
delete-prior + insert-new sequence commits (or rolls back) as a unit.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from warden.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the engine for the configured database.

    Connection pool: min 5, max 20 connections on PostgreSQL.
    SQLite (local dev, tests) uses the default pool.
    """
    if settings.is_sqlite:
        return create_async_engine(settings.database_url, echo=settings.debug)
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
    )


engine = build_engine(get_settings())

# Session factory — each request gets its own session.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
