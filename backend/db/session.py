"""
Fleetline Database Session Management

Async SQLAlchemy engine and session factory for the API process, plus a
factory for short-lived engines used by Celery workers (each task runs its
own event loop, so it cannot share the API's pooled engine).
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def create_worker_session_factory(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build a throwaway engine + session factory. Caller disposes the engine."""
    worker_engine = create_async_engine(database_url)
    factory = async_sessionmaker(worker_engine, class_=AsyncSession, expire_on_commit=False)
    return worker_engine, factory


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
