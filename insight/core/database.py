from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from insight.core.config import settings

# Import all models to register them with SQLModel metadata
from insight.models import Conversation, Message  # noqa: F401

# Create database engine (shared by the persistence layer and the live catalog)
engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)

# Sessions keep loaded attributes after commit, lazy refreshes are not possible in async code
SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """Dependency for getting database session"""
    async with SessionLocal() as session:
        yield session


async def init_db():
    """Initialize database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
