from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.context import PlanRecord, QuotaConfigRecord
from tenantgate.domain.models import TenantTranscriptionConfig, TranscriptionPlan, TranscriptionUsage
from tenantgate.persistence.guards import tenant_predicate


def _plan_record(row: TranscriptionPlan) -> PlanRecord:
    return PlanRecord(
        id=row.id,
        slug=row.slug,
        monthly_minutes_limit=row.monthly_minutes_limit,
        allows_custom_limits=row.allows_custom_limits,
        allows_overage=row.allows_overage,
        cost_per_minute=Decimal(str(row.cost_per_minute)),
        is_trial=row.is_trial,
        trial_days=row.trial_days,
    )


async def get_plan(session: AsyncSession, plan_id: int) -> PlanRecord | None:
    result = await session.execute(select(TranscriptionPlan).where(TranscriptionPlan.id == plan_id))
    row = result.scalar_one_or_none()
    return _plan_record(row) if row is not None else None


async def get_config(session: AsyncSession, *, tenant_id: int) -> QuotaConfigRecord | None:
    result = await session.execute(
        select(TenantTranscriptionConfig).where(tenant_predicate(TenantTranscriptionConfig, tenant_id))
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return QuotaConfigRecord(
        tenant_id=row.tenant_id,
        plan_id=row.plan_id,
        custom_monthly_limit=row.custom_monthly_limit,
        overage_allowed=row.overage_allowed,
        plan_activated_at=row.plan_activated_at,
    )


async def assign_plan(
    session: AsyncSession,
    *,
    tenant_id: int,
    plan_id: int,
    now: datetime,
    custom_monthly_limit: int | None = None,
    overage_allowed: bool | None = None,
) -> TenantTranscriptionConfig:
    # plan_activated_at only moves when the plan itself changes.
    result = await session.execute(
        select(TenantTranscriptionConfig).where(tenant_predicate(TenantTranscriptionConfig, tenant_id))
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = TenantTranscriptionConfig(
            tenant_id=tenant_id,
            plan_id=plan_id,
            custom_monthly_limit=custom_monthly_limit,
            overage_allowed=bool(overage_allowed),
            plan_activated_at=now,
        )
        session.add(row)
    else:
        if row.plan_id != plan_id:
            row.plan_id = plan_id
            row.plan_activated_at = now
        row.custom_monthly_limit = custom_monthly_limit
        if overage_allowed is not None:
            row.overage_allowed = overage_allowed
    await session.flush()
    return row


async def sum_usage_seconds(
    session: AsyncSession,
    *,
    tenant_id: int,
    start: datetime,
    end: datetime,
) -> tuple[int, Decimal, int]:
    # Returns (total seconds, total cost, record count) for [start, end).
    result = await session.execute(
        select(
            func.coalesce(func.sum(TranscriptionUsage.audio_duration_seconds), 0),
            func.coalesce(func.sum(TranscriptionUsage.cost_usd), 0),
            func.count(TranscriptionUsage.id),
        ).where(
            tenant_predicate(TranscriptionUsage, tenant_id),
            TranscriptionUsage.usage_date >= start,
            TranscriptionUsage.usage_date < end,
        )
    )
    seconds, cost, count = result.one()
    return int(seconds or 0), Decimal(str(cost or 0)), int(count or 0)


async def list_usage_between(
    session: AsyncSession,
    *,
    tenant_id: int,
    start: datetime,
    end: datetime,
) -> list[TranscriptionUsage]:
    result = await session.execute(
        select(TranscriptionUsage)
        .where(
            tenant_predicate(TranscriptionUsage, tenant_id),
            TranscriptionUsage.usage_date >= start,
            TranscriptionUsage.usage_date < end,
        )
        .order_by(TranscriptionUsage.usage_date.desc())
    )
    return list(result.scalars().all())


async def get_usage_by_request_id(session: AsyncSession, provider_request_id: str) -> TranscriptionUsage | None:
    result = await session.execute(
        select(TranscriptionUsage).where(TranscriptionUsage.provider_request_id == provider_request_id)
    )
    return result.scalar_one_or_none()


async def list_recent_usage_with_request_ids(
    session: AsyncSession,
    *,
    since: datetime,
) -> list[TranscriptionUsage]:
    # Spans all tenants; the reconciliation job runs outside any request.
    result = await session.execute(
        select(TranscriptionUsage)
        .where(
            TranscriptionUsage.provider_request_id.is_not(None),
            TranscriptionUsage.usage_date >= since,
        )
        .order_by(TranscriptionUsage.usage_date.asc(), TranscriptionUsage.id.asc())
    )
    return list(result.scalars().all())
