"""Async database engine and session management.

One engine, two session factories:

- async_session_factory: request sessions (account lookup, registration,
  confirmation). get_db() commits or rolls back at the end of the request.
- marker_session_factory: short-lived sessions for single-use markers.
  Each mark commits on its own, so a rollback of the request session never
  undoes a redemption.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from magiclink.core.config import settings


def build_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured (or given) database."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.environment == "development",
        pool_pre_ping=True,
    )


def build_marker_session_factory(
    bind: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Session factory for single-use marker writes.

    Markers are written with a single INSERT ... RETURNING and never load
    ORM objects, so autoflush and expiry are off.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

marker_session_factory = build_marker_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a request database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
