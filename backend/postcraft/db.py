from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, relationship as sa_relationship

from .settings import Settings, get_settings

settings = get_settings()


class Base(DeclarativeBase):
    """Declarative base for every postcraft table."""


def relationship(*args, **kwargs):
    """Relationship that must be loaded explicitly (selectinload); lazy access raises."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


def engine_options(cfg: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"future": True, "echo": cfg.db_echo}
    if cfg.is_postgres:
        options.update(pool_pre_ping=True, pool_size=cfg.db_pool_size, max_overflow=cfg.db_max_overflow)
    return options


engine = create_async_engine(settings.async_database_url, **engine_options(settings))
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; uncommitted work is rolled back if the handler fails."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
