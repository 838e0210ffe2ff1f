from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ticket_notifier.config.settings import settings


def build_engine(database_url: str = settings.DATABASE_URL, **kwargs) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 3600)
    return create_async_engine(database_url, echo=False, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def task_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory for a single Celery task run.

    Each task runs inside its own `asyncio.run` loop, so it gets a private
    engine without pooling that is disposed before the loop closes.
    """
    task_engine = build_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        yield build_session_factory(task_engine)
    finally:
        await task_engine.dispose()
