from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tenantgate.domain.context import TenantContext, UsageEvent
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.quota import QuotaTracker, SqlUsageStore
from tenantgate.tests.utils.auth import seed_licensed_tenant


def _context(tenant_id: int) -> TenantContext:
    return TenantContext(id=tenant_id, slug="acme", schema_name=f"tenant_{tenant_id}", timezone="UTC", status="active")


@pytest.mark.asyncio
async def test_sql_store_records_once_per_provider_request() -> None:
    seeded = await seed_licensed_tenant(monthly_minutes_limit=100)
    now = datetime.now(timezone.utc)
    event = UsageEvent(provider_request_id="proj.req-1", duration_seconds=61, operation_id="op-1", occurred_at=now)

    async with SessionLocal() as session:
        store = SqlUsageStore(session)
        tracker = QuotaTracker(store, time_provider=lambda: now)
        first = await tracker.record_usage(_context(seeded.tenant_id), event)
        await session.commit()
        second = await tracker.record_usage(_context(seeded.tenant_id), event)

        assert first is not None and first.id > 0
        assert second is None
        assert await tracker.usage_minutes(seeded.tenant_id) == 2

        status = await tracker.status(_context(seeded.tenant_id))
        assert status.limit_minutes == 100
        assert status.remaining_minutes == 98


@pytest.mark.asyncio
async def test_sql_store_insert_tolerates_concurrent_duplicate() -> None:
    seeded = await seed_licensed_tenant()
    now = datetime.now(timezone.utc)
    event = UsageEvent(provider_request_id="proj.req-race", duration_seconds=30)

    async with SessionLocal() as session:
        store = SqlUsageStore(session)
        # Both writers passed the existence pre-check; the unique constraint decides.
        kwargs = dict(tenant_id=seeded.tenant_id, event=event, model="nova-3", cost_usd=0, usage_date=now)
        assert await store.insert_usage(**kwargs) is not None
        assert await store.insert_usage(**kwargs) is None
        await session.commit()
        assert await store.usage_exists("proj.req-race")

        totals = await store.sum_usage(seeded.tenant_id, datetime(2000, 1, 1, tzinfo=timezone.utc), datetime(2100, 1, 1, tzinfo=timezone.utc))
    assert totals.count == 1
    assert totals.seconds == 30
