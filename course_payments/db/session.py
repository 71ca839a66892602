from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from course_payments.db.base import Base
import course_payments.models  # noqa: F401  registers the tables on Base.metadata


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, future=True)
    return create_async_engine(database_url,
                               echo=echo,
                               future=True,
                               # Pool settings
                               pool_size=10,
                               max_overflow=20,
                               pool_timeout=30,
                               pool_recycle=3600,
                               pool_pre_ping=True
                               )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False so committed rows stay readable without lazy IO
    return async_sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False
    )


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides an async DB session from the app's own engine
    and discards anything left uncommitted after the request.
    """
    async with request.app.state.session_factory() as session:
        yield session
        await session.rollback()


async def init_db(bind: AsyncEngine) -> None:
    """
    Create all tables. Development only, production schema is migrated separately.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
