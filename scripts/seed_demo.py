from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
import sys

from sqlalchemy import select

from tenantgate.domain.models import (
    Application,
    TenantApplication,
    TranscriptionPlan,
    User,
    UserApplicationAccess,
)
from tenantgate.persistence.db import SessionLocal
from tenantgate.persistence.namespaces import provision_namespace, schema_name_for
from tenantgate.persistence.repos import tenants as tenants_repo
from tenantgate.persistence.repos import transcription as transcription_repo


DEMO_TENANT_ID = 10
DEMO_TENANT_SLUG = "acme"
METERED_APP_SLUG = "tq"
HUB_APP_SLUG = "hub"


async def _get_or_create_application(session, slug: str, name: str) -> Application:
    result = await session.execute(select(Application).where(Application.slug == slug))
    application = result.scalar_one_or_none()
    if application is None:
        application = Application(slug=slug, name=name, active=True)
        session.add(application)
        await session.flush()
    return application


async def _get_or_create_plan(session) -> TranscriptionPlan:
    result = await session.execute(select(TranscriptionPlan).where(TranscriptionPlan.slug == "starter"))
    plan = result.scalar_one_or_none()
    if plan is None:
        plan = TranscriptionPlan(
            slug="starter",
            name="Starter",
            monthly_minutes_limit=2400,
            allows_custom_limits=False,
            allows_overage=False,
            cost_per_minute=Decimal("0.0043"),
        )
        session.add(plan)
        await session.flush()
    return plan


async def seed() -> None:
    # Deterministic demo data: tenant acme (id 10) licensed for tq with an admin and an operator.
    now = datetime.now(timezone.utc)
    async with SessionLocal() as session:
        tenant = await tenants_repo.get_tenant_by_id(session, DEMO_TENANT_ID)
        if tenant is None:
            tenant = await tenants_repo.create_tenant(
                session, slug=DEMO_TENANT_SLUG, name="Acme Corp", tenant_id=DEMO_TENANT_ID
            )
        await provision_namespace(session, schema_name_for(tenant.id))

        metered = await _get_or_create_application(session, METERED_APP_SLUG, "Transcription")
        await _get_or_create_application(session, HUB_APP_SLUG, "Hub")

        license_row = (
            await session.execute(
                select(TenantApplication).where(
                    TenantApplication.tenant_id == tenant.id,
                    TenantApplication.application_id == metered.id,
                )
            )
        ).scalar_one_or_none()
        if license_row is None:
            license_row = TenantApplication(
                tenant_id=tenant.id,
                application_id=metered.id,
                status="active",
                seats_purchased=5,
                seats_used=0,
            )
            session.add(license_row)

        plan = await _get_or_create_plan(session)
        await transcription_repo.assign_plan(session, tenant_id=tenant.id, plan_id=plan.id, now=now)

        existing = await session.execute(select(User).where(User.tenant_id == tenant.id))
        if existing.scalars().first() is None:
            admin = User(tenant_id=tenant.id, email="admin@acme.test", role="admin", status="active")
            operator = User(tenant_id=tenant.id, email="u1@acme.test", role="operations", status="active")
            platform = User(
                tenant_id=None,
                email="ops@platform.test",
                role="admin",
                platform_role="internal_admin",
                status="active",
            )
            session.add_all([admin, operator, platform])
            await session.flush()
            for user in (admin, operator):
                session.add(
                    UserApplicationAccess(
                        tenant_id=tenant.id,
                        user_id=user.id,
                        application_id=metered.id,
                        role_in_app=user.role,
                        active=True,
                    )
                )
            license_row.seats_used = 2
        await session.commit()
    print(f"seeded tenant_id={DEMO_TENANT_ID} slug={DEMO_TENANT_SLUG}")


def main() -> int:
    try:
        asyncio.run(seed())
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
