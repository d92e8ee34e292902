from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenantgate.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    # SQLite (tests, local runs) keeps the default pool; server databases get bounded pools.
    options: dict[str, Any] = {"pool_pre_ping": True}
    if settings.database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=max(1, int(settings.api_db_pool_size)),
        max_overflow=max(0, int(settings.api_db_max_overflow)),
        pool_timeout=30,
        pool_recycle=1800,
    )
    if settings.api_db_statement_timeout_ms > 0:
        # Enforced server-side per connection.
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
    return options


settings = get_settings()
engine = create_async_engine(settings.database_url, **engine_options(settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
