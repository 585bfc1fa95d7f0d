from typing import Optional
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from core.config import settings
from core.logger import logger


def create_engine(url: str = None, **kwargs) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    options = dict(echo=False, future=True)
    # PostgreSQL driver for async operations is asyncpg
    if url.startswith("postgresql"):
        options.update(
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_size=20,       # Base connections
            max_overflow=10,    # Burst connections
        )
    options.update(kwargs)
    return create_async_engine(url, **options)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class Database:
    """Engine + session factory owned by the process bootstrap."""

    def __init__(self, url: str = None, engine: AsyncEngine = None):
        self.engine = engine or create_engine(url)
        self.sessionmaker = create_sessionmaker(self.engine)

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    async def dispose(self):
        await self.engine.dispose()


async def get_db(request: Request):
    async with request.app.state.db.session() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_redis(request: Request):
    yield request.app.state.redis


async def safe_commit(db: AsyncSession, action: str) -> Optional[str]:
    """Commit, or roll back and return an error message for the caller's result."""
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Database write failed", action=action, error=str(e))
        return f"Failed to {action}"
    return None
