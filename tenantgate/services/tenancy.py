from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Mapping, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import ErrorCode, NamespaceError, TenantResolutionError
from tenantgate.domain.context import TenantContext
from tenantgate.persistence import namespaces
from tenantgate.persistence.repos import tenants as tenants_repo


logger = logging.getLogger(__name__)

SCOPE_TENANT = "tenant"
SCOPE_PLATFORM = "platform"
# Tenant is attached when identifiable but never required.
SCOPE_OPTIONAL = "optional"

# Static classification; the first matching prefix wins, anything else is tenant-scoped.
ROUTE_SCOPES: tuple[tuple[str, str], ...] = (
    ("/health", SCOPE_PLATFORM),
    ("/docs", SCOPE_PLATFORM),
    ("/openapi.json", SCOPE_PLATFORM),
    ("/redoc", SCOPE_PLATFORM),
    ("/platform-auth", SCOPE_PLATFORM),
    ("/applications", SCOPE_PLATFORM),
    ("/tenants", SCOPE_PLATFORM),
    ("/audit", SCOPE_PLATFORM),
    ("/webhooks", SCOPE_PLATFORM),
    ("/auth", SCOPE_OPTIONAL),
)

_VERSION_PREFIX_RE = re.compile(r"^/v\d+(?=/|$)")
_PATH_TENANT_RE = re.compile(r"^/tenant/([^/]+)")
_NUMERIC_ID_RE = re.compile(r"^\d+$")
_SLUG_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_SLUG_MIN_LENGTH = 2
_SLUG_MAX_LENGTH = 50
_MAX_TENANT_ID = 2**63 - 1
_RESERVED_SUBDOMAINS = frozenset({"www", "api", "admin", "app", "localhost"})


@dataclass(frozen=True)
class TenantIdentifier:
    # Parsed identifier: exactly one of tenant_id or slug is set.
    raw: str
    source: str
    tenant_id: int | None = None
    slug: str | None = None


class TenantRecordLike(Protocol):
    id: int
    slug: str
    status: str
    active: bool
    timezone: str


class TenantDirectory(Protocol):
    # Registry lookups used by the resolver; injectable so tests can count calls.
    async def get_by_id(self, tenant_id: int) -> TenantRecordLike | None: ...

    async def get_by_slug(self, slug: str) -> TenantRecordLike | None: ...

    async def namespace_exists(self, schema_name: str) -> bool: ...


class SqlTenantDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, tenant_id: int) -> TenantRecordLike | None:
        return await tenants_repo.get_tenant_by_id(self._session, tenant_id)

    async def get_by_slug(self, slug: str) -> TenantRecordLike | None:
        return await tenants_repo.get_tenant_by_slug(self._session, slug)

    async def namespace_exists(self, schema_name: str) -> bool:
        return await namespaces.schema_exists(self._session, schema_name)


def strip_version_prefix(path: str) -> str:
    stripped = _VERSION_PREFIX_RE.sub("", path, count=1)
    return stripped or "/"


def route_scope(path: str) -> str:
    normalized = strip_version_prefix(path)
    for prefix, scope in ROUTE_SCOPES:
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return scope
    return SCOPE_TENANT


def extract_subdomain(host: str | None) -> str | None:
    # Only real multi-label hostnames qualify; IPs and reserved labels never do.
    if not host:
        return None
    hostname = host.strip().lower()
    if hostname.startswith("["):
        return None
    hostname = hostname.split(":", 1)[0]
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass
    parts = [part for part in hostname.split(".") if part]
    if len(parts) < 3:
        return None
    candidate = parts[0]
    if candidate in _RESERVED_SUBDOMAINS:
        return None
    return candidate


def parse_identifier(raw: str, *, source: str) -> TenantIdentifier:
    # Validate syntax before any lookup so malformed input never reaches the store.
    value = raw.strip()
    if _NUMERIC_ID_RE.fullmatch(value):
        tenant_id = int(value)
        if tenant_id <= 0 or tenant_id > _MAX_TENANT_ID:
            raise TenantResolutionError(
                ErrorCode.IDENTIFIER_MALFORMED,
                "Tenant id must be a positive 64-bit integer",
                details={"source": source},
            )
        return TenantIdentifier(raw=value, source=source, tenant_id=tenant_id)
    if (
        _SLUG_MIN_LENGTH <= len(value) <= _SLUG_MAX_LENGTH
        and _SLUG_RE.fullmatch(value)
    ):
        return TenantIdentifier(raw=value, source=source, slug=value.lower())
    raise TenantResolutionError(
        ErrorCode.IDENTIFIER_MALFORMED,
        "Tenant identifier must be a numeric id or a 2-50 character slug",
        details={"source": source},
    )


class TenantResolver:
    def __init__(self, directory: TenantDirectory, *, settings: Settings | None = None) -> None:
        self._directory = directory
        self._settings = settings or get_settings()

    def extract_identifier(
        self,
        *,
        headers: Mapping[str, str],
        host: str | None,
        path: str,
    ) -> TenantIdentifier | None:
        # Header, then subdomain, then path convention, then compatibility default.
        settings = self._settings
        header_value = headers.get(settings.tenant_header_name)
        if header_value is not None and header_value.strip():
            return parse_identifier(header_value, source="header")
        if settings.tenant_subdomain_enabled:
            subdomain = extract_subdomain(host)
            if subdomain:
                return parse_identifier(subdomain, source="subdomain")
        match = _PATH_TENANT_RE.match(strip_version_prefix(path))
        if match:
            return parse_identifier(match.group(1), source="path")
        if settings.tenant_compat_fallback_enabled and settings.default_tenant_identifier:
            return parse_identifier(settings.default_tenant_identifier, source="compat_default")
        return None

    async def resolve(
        self,
        *,
        headers: Mapping[str, str],
        host: str | None,
        path: str,
    ) -> TenantContext | None:
        scope = route_scope(path)
        if scope == SCOPE_PLATFORM:
            return None
        identifier = self.extract_identifier(headers=headers, host=host, path=path)
        if identifier is None:
            if scope == SCOPE_OPTIONAL:
                return None
            raise TenantResolutionError(
                ErrorCode.IDENTIFIER_MISSING,
                f"Tenant identifier is required ({self._settings.tenant_header_name} header)",
            )
        return await self.resolve_identifier(identifier)

    async def resolve_identifier(
        self, identifier: TenantIdentifier, *, require_active: bool = True
    ) -> TenantContext:
        # Translate slugs to the canonical numeric id; nothing downstream sees the slug as identity.
        if identifier.tenant_id is not None:
            tenant = await self._directory.get_by_id(identifier.tenant_id)
        else:
            tenant = await self._directory.get_by_slug(identifier.slug or "")
        if tenant is None:
            raise TenantResolutionError(
                ErrorCode.TENANT_NOT_FOUND,
                "Tenant not found",
                details={"identifier": identifier.raw},
            )
        if require_active and (tenant.status != "active" or not tenant.active):
            raise TenantResolutionError(
                ErrorCode.TENANT_INACTIVE,
                "Tenant is not active",
                details={"identifier": identifier.raw},
            )
        try:
            schema_name = namespaces.schema_name_for(int(tenant.id))
        except NamespaceError as exc:
            logger.error("tenant_namespace_invalid tenant_id=%s", tenant.id, exc_info=exc)
            raise TenantResolutionError(ErrorCode.TENANT_NOT_FOUND, "Tenant not found") from exc
        if self._settings.tenant_schema_check_enabled and not await self._directory.namespace_exists(
            schema_name
        ):
            logger.warning("tenant_namespace_missing tenant_id=%s schema=%s", tenant.id, schema_name)
            raise TenantResolutionError(
                ErrorCode.TENANT_NOT_FOUND,
                "Tenant namespace not provisioned",
                details={"identifier": identifier.raw},
            )
        context = TenantContext(
            id=int(tenant.id),
            slug=tenant.slug,
            schema_name=schema_name,
            timezone=tenant.timezone or "UTC",
            status=tenant.status,
        )
        logger.info(
            "tenant_resolved tenant_id=%s source=%s schema=%s",
            context.id,
            identifier.source,
            context.schema_name,
        )
        return context
