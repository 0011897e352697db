from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config.settings import settings


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


engine = create_async_engine(
    str(settings.DATABASE_URL),
    echo=settings.DATABASE_ECHO,
    **_engine_options(str(settings.DATABASE_URL)),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine, class_=AsyncSession, expire_on_commit=False
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get async database session"""
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise


@asynccontextmanager
async def async_session_scope(session_factory=None):
    """Session for scheduled jobs; rolls back when the job body raises."""
    factory = session_factory or AsyncSessionLocal
    async with factory() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise


@asynccontextmanager
async def isolated_session_factory():
    """
    Session factory on a throwaway engine without pooling.

    Celery tasks drive each run through ``asyncio.run``; pooled connections
    are tied to the loop that opened them, so every run gets its own engine.
    """
    task_engine = create_async_engine(
        str(settings.DATABASE_URL),
        echo=settings.DATABASE_ECHO,
        poolclass=NullPool,
    )
    try:
        yield async_sessionmaker(
            bind=task_engine, class_=AsyncSession, expire_on_commit=False
        )
    finally:
        await task_engine.dispose()
