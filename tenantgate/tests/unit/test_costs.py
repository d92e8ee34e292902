from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from tenantgate.core.config import Settings
from tenantgate.core.errors import BillingProviderError
from tenantgate.domain.models import JobExecution, TranscriptionUsage
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.costs import estimate_cost, overage_cost
from tenantgate.services.costs.reconciliation import (
    JOB_NAME,
    BillingClient,
    project_id_from_request_id,
    reconcile_costs,
)
from tenantgate.tests.utils.auth import seed_licensed_tenant


BILLING_SETTINGS = Settings(billing_admin_api_key="test-admin-key", billing_api_base_url="https://billing.test/v1")


def test_estimate_cost_uses_exact_seconds_and_model_rate() -> None:
    assert estimate_cost(60, "nova-3").cost_usd == Decimal("0.0043")
    assert estimate_cost(30, "enhanced").cost_usd == Decimal("0.0073")
    unknown = estimate_cost(120, "mystery-model")
    assert unknown.rate_per_minute == Decimal("0.0043")
    assert estimate_cost(120).model == "nova-3"


def test_overage_cost_only_counts_minutes_past_limit() -> None:
    assert overage_cost(2500, 2400, Decimal("0.0043")) == Decimal("0.4300")
    assert overage_cost(100, 2400, Decimal("0.0043")) == Decimal("0")


def test_project_id_is_first_request_id_segment() -> None:
    assert project_id_from_request_id("proj-1.abc.def") == "proj-1"
    assert project_id_from_request_id(".abc") is None
    assert project_id_from_request_id(None) is None


@pytest.mark.asyncio
async def test_billing_client_reads_usd_detail() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"response": {"details": {"usd": 0.0125}}})

    client = BillingClient(settings=BILLING_SETTINGS, transport=httpx.MockTransport(handler))

    assert await client.get_request_cost("proj", "proj.req-1") == Decimal("0.0125")
    assert seen[0].url.path == "/v1/projects/proj/requests/proj.req-1"
    assert seen[0].headers["Authorization"] == "Token test-admin-key"


@pytest.mark.asyncio
async def test_billing_client_wraps_http_errors() -> None:
    client = BillingClient(
        settings=BILLING_SETTINGS,
        transport=httpx.MockTransport(lambda request: httpx.Response(403)),
    )
    with pytest.raises(BillingProviderError):
        await client.get_request_cost("proj", "proj.req-1")


async def _seed_usage(tenant_id: int, now: datetime) -> None:
    async with SessionLocal() as session:
        rows = [
            ("proj.changed", now - timedelta(hours=1)),
            ("proj.same", now - timedelta(hours=2)),
            ("proj.gone", now - timedelta(hours=3)),
            ("proj.pending", now - timedelta(hours=4)),
            (".no-project", now - timedelta(hours=5)),
            ("proj.too-old", now - timedelta(days=3)),
        ]
        for request_id, usage_date in rows:
            session.add(
                TranscriptionUsage(
                    tenant_id=tenant_id,
                    audio_duration_seconds=60,
                    stt_model="nova-3",
                    cost_usd=Decimal("0.0043"),
                    usage_date=usage_date,
                    provider_request_id=request_id,
                )
            )
        await session.commit()


def _billing_handler(request: httpx.Request) -> httpx.Response:
    request_id = request.url.path.rsplit("/", 1)[-1]
    if request_id == "proj.changed":
        return httpx.Response(200, json={"response": {"details": {"usd": 0.0051}}})
    if request_id == "proj.same":
        return httpx.Response(200, json={"response": {"details": {"usd": 0.0043}}})
    if request_id == "proj.pending":
        return httpx.Response(200, json={"response": {}})
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_reconcile_replaces_estimates_with_billed_cost() -> None:
    seeded = await seed_licensed_tenant()
    now = datetime.now(timezone.utc)
    await _seed_usage(seeded.tenant_id, now)
    client = BillingClient(settings=BILLING_SETTINGS, transport=httpx.MockTransport(_billing_handler))

    async with SessionLocal() as session:
        stats = await reconcile_costs(session, client=client, now=now, settings=BILLING_SETTINGS)

    assert stats.as_dict() == {"processed": 5, "updated": 1, "unchanged": 1, "skipped": 1, "failed": 2}
    async with SessionLocal() as session:
        changed = (
            await session.execute(
                select(TranscriptionUsage).where(TranscriptionUsage.provider_request_id == "proj.changed")
            )
        ).scalar_one()
        execution = (await session.execute(select(JobExecution))).scalar_one()
    assert Decimal(str(changed.cost_usd)) == Decimal("0.0051")
    assert execution.job_name == JOB_NAME
    assert execution.status == "success"
    assert execution.stats_json["updated"] == 1


@pytest.mark.asyncio
async def test_reconcile_without_admin_key_records_failed_run() -> None:
    unconfigured = Settings(billing_admin_api_key=None)
    async with SessionLocal() as session:
        stats = await reconcile_costs(session, client=BillingClient(settings=unconfigured), settings=unconfigured)

    assert stats.processed == 0
    async with SessionLocal() as session:
        execution = (await session.execute(select(JobExecution))).scalar_one()
    assert execution.status == "failed"
    assert "not configured" in execution.error_message
