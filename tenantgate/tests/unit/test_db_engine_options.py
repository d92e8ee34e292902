from __future__ import annotations

from tenantgate.core.config import Settings
from tenantgate.persistence.db import engine_options


def test_sqlite_keeps_default_pool() -> None:
    options = engine_options(Settings(database_url="sqlite+aiosqlite:///./local.db", api_db_pool_size=50))
    assert options == {"pool_pre_ping": True}


def test_server_database_gets_bounded_pool() -> None:
    options = engine_options(
        Settings(
            database_url="postgresql+asyncpg://u:p@db/tenantgate",
            api_db_pool_size=0,
            api_db_max_overflow=-3,
            api_db_statement_timeout_ms=0,
        )
    )
    assert options["pool_size"] == 1
    assert options["max_overflow"] == 0
    assert options["pool_recycle"] == 1800
    assert "connect_args" not in options


def test_statement_timeout_is_passed_to_connections() -> None:
    options = engine_options(
        Settings(database_url="postgresql+asyncpg://u:p@db/tenantgate", api_db_statement_timeout_ms=2500)
    )
    assert options["connect_args"] == {"server_settings": {"statement_timeout": "2500"}}
