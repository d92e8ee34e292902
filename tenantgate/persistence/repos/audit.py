from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.models import AuditEvent
from tenantgate.persistence.guards import require_tenant_id


async def list_events(
    session: AsyncSession,
    *,
    tenant_id: int | None = None,
    event_type: str | None = None,
    outcome: str | None = None,
    error_code: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditEvent]:
    # Platform admins may list across tenants; a given tenant id is still validated.
    stmt = select(AuditEvent)
    if tenant_id is not None:
        stmt = stmt.where(AuditEvent.tenant_id == require_tenant_id(tenant_id))
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if outcome:
        stmt = stmt.where(AuditEvent.outcome == outcome)
    if error_code:
        stmt = stmt.where(AuditEvent.error_code == error_code)
    if occurred_from:
        stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

    stmt = stmt.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_event_by_id(session: AsyncSession, *, event_id: int) -> AuditEvent | None:
    result = await session.execute(select(AuditEvent).where(AuditEvent.id == event_id))
    return result.scalar_one_or_none()
