from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.context import EntitlementRecord, LicenseRecord
from tenantgate.domain.models import Application, TenantApplication, UserApplicationAccess
from tenantgate.persistence.guards import require_tenant_id, tenant_predicate


async def get_application_by_slug(session: AsyncSession, slug: str) -> Application | None:
    result = await session.execute(select(Application).where(Application.slug == slug))
    return result.scalar_one_or_none()


def _license_record(row: TenantApplication) -> LicenseRecord:
    return LicenseRecord(
        tenant_id=row.tenant_id,
        application_id=row.application_id,
        status=row.status,
        seats_purchased=row.seats_purchased,
        seats_used=row.seats_used,
        expires_at=row.expires_at,
        trial_used=row.trial_used,
    )


async def get_license(
    session: AsyncSession,
    *,
    tenant_id: int,
    application_slug: str,
) -> LicenseRecord | None:
    # Join through the catalog so callers can address applications by slug.
    result = await session.execute(
        select(TenantApplication)
        .join(Application, TenantApplication.application_id == Application.id)
        .where(tenant_predicate(TenantApplication, tenant_id), Application.slug == application_slug)
    )
    row = result.scalar_one_or_none()
    return _license_record(row) if row is not None else None


async def get_license_for_update(
    session: AsyncSession,
    *,
    tenant_id: int,
    application_id: int,
) -> TenantApplication | None:
    # Row lock serializes concurrent seat grants on the same license.
    result = await session.execute(
        select(TenantApplication)
        .where(
            tenant_predicate(TenantApplication, tenant_id),
            TenantApplication.application_id == application_id,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def get_entitlement(
    session: AsyncSession,
    *,
    tenant_id: int,
    user_id: int,
    application_slug: str,
) -> EntitlementRecord | None:
    result = await session.execute(
        select(UserApplicationAccess)
        .join(Application, UserApplicationAccess.application_id == Application.id)
        .where(
            tenant_predicate(UserApplicationAccess, tenant_id),
            UserApplicationAccess.user_id == user_id,
            Application.slug == application_slug,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return EntitlementRecord(
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        application_id=row.application_id,
        role_in_app=row.role_in_app,
        active=row.active,
        expires_at=row.expires_at,
    )


async def get_entitlement_row(
    session: AsyncSession,
    *,
    tenant_id: int,
    user_id: int,
    application_id: int,
) -> UserApplicationAccess | None:
    result = await session.execute(
        select(UserApplicationAccess).where(
            tenant_predicate(UserApplicationAccess, tenant_id),
            UserApplicationAccess.user_id == user_id,
            UserApplicationAccess.application_id == application_id,
        )
    )
    return result.scalar_one_or_none()


async def list_licensed_application_slugs(session: AsyncSession, *, tenant_id: int) -> list[str]:
    result = await session.execute(
        select(Application.slug)
        .join(TenantApplication, TenantApplication.application_id == Application.id)
        .where(tenant_predicate(TenantApplication, tenant_id), TenantApplication.status == "active")
        .order_by(Application.slug)
    )
    return list(result.scalars().all())


async def expire_licenses(session: AsyncSession, *, now: datetime, tenant_id: int | None = None) -> int:
    # Correct stored status for licenses whose expiry already passed.
    stmt = (
        update(TenantApplication)
        .where(
            TenantApplication.status == "active",
            TenantApplication.expires_at.is_not(None),
            TenantApplication.expires_at <= now,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    if tenant_id is not None:
        stmt = stmt.where(TenantApplication.tenant_id == require_tenant_id(tenant_id))
    result = await session.execute(stmt)
    return int(result.rowcount or 0)
