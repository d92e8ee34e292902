from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.errors import NamespaceError
from tenantgate.persistence.guards import require_tenant_id


logger = logging.getLogger(__name__)

SCHEMA_PREFIX = "tenant_"
_SCHEMA_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")
# Postgres truncates identifiers beyond 63 bytes.
_MAX_IDENTIFIER_LENGTH = 63


def schema_name_for(tenant_id: int) -> str:
    # Deterministic and injective: one canonical id maps to exactly one namespace.
    name = f"{SCHEMA_PREFIX}{require_tenant_id(tenant_id)}"
    return validate_schema_name(name)


def validate_schema_name(name: str) -> str:
    # Schema names land in identifier position, where bind parameters cannot help.
    if not isinstance(name, str) or not _SCHEMA_NAME_RE.fullmatch(name):
        raise NamespaceError(f"Invalid tenant namespace name: {name!r}")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise NamespaceError(f"Tenant namespace name too long: {name!r}")
    return name


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def schema_exists(session: AsyncSession, name: str) -> bool:
    # Catalog lookup binds the name as a value; only validated names are accepted.
    validated = validate_schema_name(name)
    if _dialect_name(session) != "postgresql":
        return True
    result = await session.execute(
        text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :name"),
        {"name": validated},
    )
    return result.scalar_one_or_none() is not None


async def apply_tenant_scope(session: AsyncSession, name: str) -> None:
    # SET LOCAL lives only until commit/rollback, so pooled connections never keep it.
    validated = validate_schema_name(name)
    if _dialect_name(session) != "postgresql":
        return
    await session.execute(text(f'SET LOCAL search_path TO "{validated}", public'))
    logger.debug("tenant_scope_applied schema=%s", validated)


async def provision_namespace(session: AsyncSession, name: str) -> bool:
    # Idempotent; returns False on dialects without schemas.
    validated = validate_schema_name(name)
    if _dialect_name(session) != "postgresql":
        return False
    await session.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{validated}"'))
    logger.info("tenant_namespace_provisioned schema=%s", validated)
    return True
