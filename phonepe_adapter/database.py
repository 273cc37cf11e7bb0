"""Database engine and session management for the reference host store."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from phonepe_adapter.config import settings
from phonepe_adapter.models.host import Base

engine = create_async_engine(settings.database_url, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind: AsyncEngine = engine):
    """Create all tables. Safe to call multiple times (CREATE IF NOT EXISTS)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
