from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.deps import get_db, require_platform_admin
from tenantgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from tenantgate.apps.api.response import SuccessEnvelope, success_response
from tenantgate.core.config import get_settings
from tenantgate.domain.context import Principal
from tenantgate.persistence.repos import audit as audit_repo


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    tenant_id: int | None
    actor_type: str
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    ip_address: str | None
    metadata_json: dict[str, Any] | None
    error_code: str | None


class AuditEventsPage(BaseModel):
    items: list[AuditEventResponse]
    next_offset: int | None


def _to_response(event) -> AuditEventResponse:
    # Serialize audit event datetimes to ISO 8601 for API clients.
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at.isoformat(),
        tenant_id=event.tenant_id,
        actor_type=event.actor_type,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        ip_address=event.ip_address,
        metadata_json=event.metadata_json,
        error_code=event.error_code,
    )


@router.get("/events", response_model=SuccessEnvelope[AuditEventsPage])
async def list_audit_events(
    request: Request,
    tenant_id: int | None = Query(default=None, gt=0),
    event_type: str | None = None,
    outcome: str | None = None,
    error_code: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
    principal: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Platform scope: admins may read across tenants, optionally narrowed by tenant_id.
    settings = get_settings()
    page_size = min(limit or settings.audit_default_page_size, settings.audit_max_page_size)
    events = await audit_repo.list_events(
        db,
        tenant_id=tenant_id,
        event_type=event_type,
        outcome=outcome,
        error_code=error_code,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        offset=offset,
        limit=page_size + 1,
    )

    next_offset = None
    if len(events) > page_size:
        events = events[:page_size]
        next_offset = offset + page_size

    page = AuditEventsPage(items=[_to_response(event) for event in events], next_offset=next_offset)
    return success_response(request=request, data=page)


@router.get("/events/{event_id}", response_model=SuccessEnvelope[AuditEventResponse])
async def get_audit_event(
    request: Request,
    event_id: int,
    principal: Principal = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
) -> dict:
    event = await audit_repo.get_event_by_id(db, event_id=event_id)
    if event is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Audit event not found"})
    return success_response(request=request, data=_to_response(event))
