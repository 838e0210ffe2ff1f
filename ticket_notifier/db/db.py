import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from .models import Base
from .session import engine as default_engine

from ticket_notifier.utils.logging import get_logger

logger = get_logger()


async def create_tables(engine: AsyncEngine = default_engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created all tables.")


async def drop_tables(engine: AsyncEngine = default_engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Dropped all tables.")


async def reset_db(engine: AsyncEngine = default_engine):
    logger.info("Resetting database...")
    await drop_tables(engine)
    await create_tables(engine)
    logger.info("Database reset complete.")


if __name__ == "__main__":
    asyncio.run(reset_db())
