from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.models import Tenant


async def get_tenant_by_id(session: AsyncSession, tenant_id: int) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_slug(session: AsyncSession, slug: str) -> Tenant | None:
    # Slugs are stored lowercased; lookups are case-insensitive.
    result = await session.execute(select(Tenant).where(Tenant.slug == slug.lower()))
    return result.scalar_one_or_none()


async def create_tenant(
    session: AsyncSession,
    *,
    slug: str,
    name: str,
    timezone: str = "UTC",
    tenant_id: int | None = None,
) -> Tenant:
    tenant = Tenant(
        id=tenant_id,
        slug=slug.lower(),
        name=name,
        status="active",
        active=True,
        timezone=timezone,
    )
    session.add(tenant)
    await session.flush()
    return tenant
