from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.models import User
from tenantgate.persistence.guards import tenant_predicate


async def get_tenant_user(session: AsyncSession, *, tenant_id: int, user_id: int) -> User | None:
    # Tenant users are only visible through their own tenant.
    result = await session.execute(
        select(User).where(tenant_predicate(User, tenant_id), User.id == user_id)
    )
    return result.scalar_one_or_none()


async def get_platform_user(session: AsyncSession, *, user_id: int) -> User | None:
    # Platform admins live outside any tenant and are looked up globally.
    result = await session.execute(
        select(User).where(User.id == user_id, User.tenant_id.is_(None))
    )
    return result.scalar_one_or_none()
