from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.rate_limit import enforce_rate_limit
from tenantgate.core.config import get_settings
from tenantgate.core.errors import AccessDeniedError, AuthorizationError, ErrorCode, TenantResolutionError
from tenantgate.domain.context import Capability, Decision, Principal, QuotaStatus, TenantContext
from tenantgate.persistence.db import get_session
from tenantgate.persistence.namespaces import apply_tenant_scope
from tenantgate.services.audit import AuditSink, DatabaseAuditSink, get_request_context, record_event
from tenantgate.services.auth.verifier import AuthenticationVerifier, SqlPrincipalStore
from tenantgate.services.authz.engine import AccessDecisionEngine, SqlAccessStore
from tenantgate.services.cache import get_cache
from tenantgate.services.quota import QuotaTracker, SqlUsageStore
from tenantgate.services.tenancy import SqlTenantDirectory, TenantResolver


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_tenant_resolver(db: AsyncSession = Depends(get_db)) -> TenantResolver:
    return TenantResolver(SqlTenantDirectory(db))


def get_verifier(db: AsyncSession = Depends(get_db)) -> AuthenticationVerifier:
    return AuthenticationVerifier(SqlPrincipalStore(db))


def get_audit_sink(request: Request) -> AuditSink:
    request_ctx = get_request_context(request)
    return DatabaseAuditSink(request_id=request_ctx["request_id"], ip_address=request_ctx["ip_address"])


def get_access_engine(
    db: AsyncSession = Depends(get_db),
    sink: AuditSink = Depends(get_audit_sink),
) -> AccessDecisionEngine:
    return AccessDecisionEngine(SqlAccessStore(db), sink)


async def get_quota_tracker(db: AsyncSession = Depends(get_db)) -> QuotaTracker:
    return QuotaTracker(SqlUsageStore(db), cache=await get_cache())


def _request_metadata(request: Request) -> dict[str, str]:
    # Include minimal request context for traceability without sensitive headers.
    return {"path": request.url.path, "method": request.method}


async def _audit_failure(
    request: Request,
    *,
    event_type: str,
    exc: AccessDeniedError,
    tenant_id: int | None = None,
) -> None:
    request_ctx = get_request_context(request)
    await record_event(
        tenant_id=tenant_id,
        actor_type="anonymous",
        actor_id=None,
        actor_role=None,
        event_type=event_type,
        outcome="failure",
        resource_type="auth",
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata=_request_metadata(request),
        error_code=exc.code.value,
        best_effort=True,
    )


async def get_tenant_context(
    request: Request,
    resolver: TenantResolver = Depends(get_tenant_resolver),
    db: AsyncSession = Depends(get_db),
) -> TenantContext | None:
    # Resolution runs before authentication; failures abort the pipeline immediately.
    try:
        tenant = await resolver.resolve(
            headers=request.headers,
            host=request.headers.get("host"),
            path=request.url.path,
        )
    except TenantResolutionError as exc:
        await _audit_failure(request, event_type="tenant.resolution.failure", exc=exc)
        raise
    if tenant is not None:
        # Transaction-local scope; released on commit/rollback before the connection is pooled.
        await apply_tenant_scope(db, tenant.schema_name)
        request.state.tenant = tenant
    return tenant


async def require_tenant(tenant: TenantContext | None = Depends(get_tenant_context)) -> TenantContext:
    if tenant is None:
        raise TenantResolutionError(
            ErrorCode.IDENTIFIER_MISSING,
            f"Tenant identifier is required ({get_settings().tenant_header_name} header)",
        )
    return tenant


async def get_current_principal(
    request: Request,
    tenant: TenantContext | None = Depends(get_tenant_context),
    verifier: AuthenticationVerifier = Depends(get_verifier),
) -> Principal:
    try:
        principal = await verifier.authenticate(request.headers.get("Authorization"), tenant)
    except AccessDeniedError as exc:
        await _audit_failure(
            request,
            event_type="auth.access.failure",
            exc=exc,
            tenant_id=tenant.id if tenant else None,
        )
        raise
    request.state.principal = principal
    return principal


async def get_optional_principal(
    request: Request,
    tenant: TenantContext | None = Depends(get_tenant_context),
    verifier: AuthenticationVerifier = Depends(get_verifier),
) -> Principal | None:
    # Anonymous callers are allowed; failures are not audited as denials.
    return await verifier.authenticate_optional(request.headers.get("Authorization"), tenant)


async def require_platform_admin(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_platform_admin:
        raise AuthorizationError(ErrorCode.ROLE_INSUFFICIENT, "Platform admin role required")
    await enforce_rate_limit(request=request, response=response, scope_key=f"platform:{principal.user_id}")
    return principal


@dataclass(frozen=True)
class RequestAccess:
    # Outcome of the full pipeline for one route: who, where, and the allow decision.
    tenant: TenantContext
    principal: Principal
    decision: Decision


def require_capability(capability: Capability):
    # Dependency factory: resolve tenant, authenticate, authorize, then rate limit.
    async def _dependency(
        request: Request,
        response: Response,
        tenant: TenantContext = Depends(require_tenant),
        principal: Principal = Depends(get_current_principal),
        engine: AccessDecisionEngine = Depends(get_access_engine),
    ) -> RequestAccess:
        request_ctx = get_request_context(request)
        decision = await engine.require(tenant, principal, capability, request_id=request_ctx["request_id"])
        await enforce_rate_limit(request=request, response=response, scope_key=f"tenant:{tenant.id}")
        return RequestAccess(tenant=tenant, principal=principal, decision=decision)

    return _dependency


def quota_headers(status: QuotaStatus) -> dict[str, str]:
    headers = {
        "X-Quota-Limit": str(status.limit_minutes),
        "X-Quota-Used": str(status.used_minutes),
        "X-Quota-Remaining": str(status.remaining_minutes),
    }
    if status.warning:
        headers["X-Quota-Warning"] = "overage"
    return headers


def require_quota(capability: Capability):
    # Metered routes: full access pipeline, then the pre-flight quota check.
    access_dependency = require_capability(capability)

    async def _dependency(
        request: Request,
        response: Response,
        access: RequestAccess = Depends(access_dependency),
        tracker: QuotaTracker = Depends(get_quota_tracker),
    ) -> RequestAccess:
        status = await tracker.check_quota(access.tenant)
        request.state.quota = status
        for key, value in quota_headers(status).items():
            response.headers[key] = value
        return access

    return _dependency
