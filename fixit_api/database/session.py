from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fixit_api.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url.replace("postgresql://", "postgresql+asyncpg://"),
    echo=False,  # Use DEBUG_SQL to raise the sqlalchemy log level instead
    pool_size=5,
    max_overflow=10,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

