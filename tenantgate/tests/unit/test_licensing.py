from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from tenantgate.core.errors import SeatGrantError
from tenantgate.domain.models import TenantApplication, User
from tenantgate.persistence.db import SessionLocal
from tenantgate.persistence.repos import licensing as licensing_repo
from tenantgate.services.licensing import expire_licenses, grant_seat, revoke_seat
from tenantgate.tests.utils.auth import seed_licensed_tenant


async def _license_row(session, tenant_id: int) -> TenantApplication:
    result = await session.execute(select(TenantApplication).where(TenantApplication.tenant_id == tenant_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_grant_and_revoke_track_seat_usage() -> None:
    seeded = await seed_licensed_tenant(seats_purchased=3)
    async with SessionLocal() as session:
        newcomer = User(tenant_id=seeded.tenant_id, email="new@acme.test", role="operations")
        session.add(newcomer)
        await session.flush()

        entitlement = await grant_seat(
            session,
            tenant_id=seeded.tenant_id,
            application_id=seeded.application_id,
            user_id=newcomer.id,
        )
        assert entitlement.active
        assert (await _license_row(session, seeded.tenant_id)).seats_used == 3

        # Regranting an active seat only updates the role.
        await grant_seat(
            session,
            tenant_id=seeded.tenant_id,
            application_id=seeded.application_id,
            user_id=newcomer.id,
            role_in_app="manager",
        )
        assert (await _license_row(session, seeded.tenant_id)).seats_used == 3

        assert await revoke_seat(
            session, tenant_id=seeded.tenant_id, application_id=seeded.application_id, user_id=newcomer.id
        )
        assert not await revoke_seat(
            session, tenant_id=seeded.tenant_id, application_id=seeded.application_id, user_id=newcomer.id
        )
        assert (await _license_row(session, seeded.tenant_id)).seats_used == 2


@pytest.mark.asyncio
async def test_regrant_renews_expired_seat_without_consuming_another() -> None:
    seeded = await seed_licensed_tenant(seats_purchased=2)
    async with SessionLocal() as session:
        held = await licensing_repo.get_entitlement_row(
            session,
            tenant_id=seeded.tenant_id,
            user_id=seeded.operator_id,
            application_id=seeded.application_id,
        )
        held.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        await session.flush()

        renewed = await grant_seat(
            session,
            tenant_id=seeded.tenant_id,
            application_id=seeded.application_id,
            user_id=seeded.operator_id,
        )

        assert renewed.active
        assert renewed.expires_at is None
        assert (await _license_row(session, seeded.tenant_id)).seats_used == 2


@pytest.mark.asyncio
async def test_grant_refuses_when_seats_are_full() -> None:
    seeded = await seed_licensed_tenant(seats_purchased=2)
    async with SessionLocal() as session:
        extra = User(tenant_id=seeded.tenant_id, email="extra@acme.test", role="operations")
        session.add(extra)
        await session.flush()
        with pytest.raises(SeatGrantError):
            await grant_seat(
                session,
                tenant_id=seeded.tenant_id,
                application_id=seeded.application_id,
                user_id=extra.id,
            )


@pytest.mark.asyncio
async def test_expire_licenses_flips_only_past_due_rows() -> None:
    seeded = await seed_licensed_tenant()
    now = datetime.now(timezone.utc)
    async with SessionLocal() as session:
        row = await _license_row(session, seeded.tenant_id)
        row.expires_at = now - timedelta(minutes=1)
        await session.commit()

    async with SessionLocal() as session:
        assert await expire_licenses(session, now=now) == 1
        assert await expire_licenses(session, now=now) == 0

    async with SessionLocal() as session:
        record = await licensing_repo.get_license(session, tenant_id=seeded.tenant_id, application_slug="tq")
    assert record.status == "expired"
