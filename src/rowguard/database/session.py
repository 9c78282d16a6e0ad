from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rowguard.config.settings import Settings, get_settings


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Create the AsyncEngine for the configured DATABASE_URL.

    `pool_pre_ping` is left on so stale pooled connections are detected before use.
    """
    settings = settings or get_settings()
    return create_async_engine(
        settings.effective_database_url,
        echo=settings.SQLALCHEMY_ECHO,   # Set to False in production
        pool_pre_ping=True,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: handles keep their own snapshot, but callers that
    # also use ORM instances should not see them expire after commit.
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session(
    maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session and ensure it's closed afterwards.

    Usage:
        async for db in get_async_session(maker):
            repo = ItemRepository(db)
            ...
            await db.commit()
    """
    async with maker() as session:
        yield session
