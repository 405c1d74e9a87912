"""
Database session configuration.

One async engine for the ledger. Balance-changing work takes explicit row
locks (SELECT ... FOR UPDATE), so the pool runs at READ COMMITTED and
recycles connections before the server drops them.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from splitspace.app.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_recycle=settings.db_pool_recycle_seconds,
    pool_pre_ping=True,
    isolation_level=settings.db_isolation_level,
)

# Entries and wallets stay readable after commit for event payloads and responses
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    Request-scoped session. A request that fails mid-transaction is rolled
    back before the session is returned to the pool.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
