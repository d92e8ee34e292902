from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any tenantgate module builds the engine.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="tenantgate-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR}/tenantgate.db")
os.environ.setdefault("JWT_SECRET", "test-secret-with-at-least-32-bytes-of-entropy")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("CACHE_BACKEND", "memory")

import pytest

from tenantgate.core.config import get_settings
from tenantgate.domain.models import Base
from tenantgate.persistence.db import engine
from tenantgate.services.cache import reset_cache_state


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Fresh tables per test keep seeded tenants and usage rows isolated.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_caches() -> None:
    # Clear settings and backend caches between tests to avoid env leakage.
    get_settings.cache_clear()
    reset_cache_state()
    yield
    get_settings.cache_clear()
    reset_cache_state()
