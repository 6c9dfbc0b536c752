"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — one engine per app (built from the
Settings passed to create_app), an AsyncSession per request via the
get_db dependency. Postgres (asyncpg) in deployment, SQLite (aiosqlite)
for local runs and tests.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from jotter.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    url = settings.database_url
    # SQLite (aiosqlite) is not well-served by connection pooling.
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
