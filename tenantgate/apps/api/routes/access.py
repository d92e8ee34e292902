from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from tenantgate.apps.api.deps import (
    get_access_engine,
    get_current_principal,
    get_optional_principal,
    get_tenant_context,
    require_tenant,
)
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.domain.context import Principal, TenantContext
from tenantgate.services.audit import get_request_context
from tenantgate.services.authz.capabilities import get_capability
from tenantgate.services.authz.engine import AccessDecisionEngine


router = APIRouter(tags=["access"], responses=DEFAULT_ERROR_RESPONSES)


class WhoAmIResponse(BaseModel):
    authenticated: bool
    principal: dict[str, Any] | None = None
    tenant: dict[str, Any] | None = None


class AccessCheckRequest(BaseModel):
    capability: str = Field(min_length=1)


class AccessCheckResponse(BaseModel):
    allowed: bool
    reason: str
    layer: int
    capability: str | None


@router.get("/auth/me", response_model=SuccessEnvelope[WhoAmIResponse])
async def whoami(
    request: Request,
    tenant: TenantContext | None = Depends(get_tenant_context),
    principal: Principal | None = Depends(get_optional_principal),
) -> dict:
    # Anonymous callers get a stable negative answer rather than a 401.
    if principal is None:
        return success_response(request=request, data=WhoAmIResponse(authenticated=False))
    tenant_payload = None
    if tenant is not None:
        tenant_payload = {"id": tenant.id, "slug": tenant.slug, "status": tenant.status}
    payload = WhoAmIResponse(authenticated=True, principal=principal.as_dict(), tenant=tenant_payload)
    return success_response(request=request, data=payload)


@router.post("/access/check", response_model=SuccessEnvelope[AccessCheckResponse])
async def check_access(
    request: Request,
    body: AccessCheckRequest,
    tenant: TenantContext = Depends(require_tenant),
    principal: Principal = Depends(get_current_principal),
    engine: AccessDecisionEngine = Depends(get_access_engine),
) -> dict:
    # Evaluates without raising so callers can inspect denials; the decision is still audited.
    capability = get_capability(body.capability)
    if capability is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "CAPABILITY_UNKNOWN", "message": "Unknown capability"},
        )
    request_ctx = get_request_context(request)
    decision = await engine.authorize(tenant, principal, capability, request_id=request_ctx["request_id"])
    return success_response(request=request, data=AccessCheckResponse(**decision.as_dict()))
