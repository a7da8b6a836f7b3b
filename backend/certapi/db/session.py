"""SQLAlchemy async engine and session utilities."""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from certapi.core.config import Settings


@lru_cache
def _engine_for(database_url: str, database_echo: bool) -> AsyncEngine:
    # Issuer lookups sit on the request path; drop dead connections early.
    return create_async_engine(database_url, echo=database_echo, pool_pre_ping=True)


@lru_cache
def _session_maker_for(database_url: str, database_echo: bool) -> async_sessionmaker:
    return async_sessionmaker(_engine_for(database_url, database_echo), expire_on_commit=False)


def get_async_engine(settings: Settings) -> AsyncEngine:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return _engine_for(settings.database_url, settings.database_echo)


def get_session_maker(settings: Settings) -> async_sessionmaker:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return _session_maker_for(settings.database_url, settings.database_echo)


async def dispose_engine(settings: Settings) -> None:
    """Close pooled connections for the configured database, if any."""

    if settings.database_url:
        await get_async_engine(settings).dispose()
