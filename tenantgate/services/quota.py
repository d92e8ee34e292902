from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
import math
from typing import Any, Callable, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import ErrorCode, QuotaError
from tenantgate.domain.context import (
    PlanRecord,
    QuotaConfigRecord,
    QuotaStatus,
    TenantContext,
    UsageEvent,
    as_utc,
)
from tenantgate.domain.models import TranscriptionUsage
from tenantgate.persistence.repos import transcription as transcription_repo
from tenantgate.services.cache import TTLCache
from tenantgate.services.costs.pricing import (
    DEFAULT_COST_PER_MINUTE,
    estimate_cost,
    overage_cost,
    quantize_usd,
)


logger = logging.getLogger(__name__)

DEFAULT_PLAN_SLUG = "default"


def effective_limit(plan: PlanRecord, config: QuotaConfigRecord | None) -> int:
    # A custom limit only counts when the plan allows custom limits.
    if config is not None and config.custom_monthly_limit is not None and plan.allows_custom_limits:
        return int(config.custom_monthly_limit)
    return int(plan.monthly_minutes_limit)


def overage_permitted(plan: PlanRecord, config: QuotaConfigRecord | None) -> bool:
    return bool(plan.allows_overage or (config is not None and config.overage_allowed))


def trial_expires_at(plan: PlanRecord, config: QuotaConfigRecord | None) -> datetime | None:
    # Derived on read so expiry never waits for the periodic sweep.
    if not plan.is_trial or plan.trial_days is None or config is None:
        return None
    activated_at = as_utc(config.plan_activated_at)
    if activated_at is None:
        return None
    return activated_at + timedelta(days=int(plan.trial_days))


def seconds_to_minutes(total_seconds: int) -> int:
    # Partial minutes always round up.
    return math.ceil(max(int(total_seconds), 0) / 60)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _month_start(now: datetime) -> datetime:
    # Normalize to the UTC month boundary for monthly quotas.
    now = now.astimezone(timezone.utc)
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


def _shift_month(month_start: datetime, months: int) -> datetime:
    index = month_start.year * 12 + (month_start.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Allowance:
    # Effective monthly allowance derived from (plan, config).
    plan_slug: str
    limit_minutes: int
    overage_allowed: bool
    cost_per_minute: Decimal
    trial_expires_at: datetime | None = None
    configured: bool = True

    def to_cache(self) -> dict[str, Any]:
        return {
            "plan_slug": self.plan_slug,
            "limit_minutes": self.limit_minutes,
            "overage_allowed": self.overage_allowed,
            "cost_per_minute": str(self.cost_per_minute),
            "trial_expires_at": self.trial_expires_at.isoformat() if self.trial_expires_at else None,
            "configured": self.configured,
        }

    @classmethod
    def from_cache(cls, payload: dict[str, Any]) -> Allowance:
        trial = payload.get("trial_expires_at")
        return cls(
            plan_slug=payload["plan_slug"],
            limit_minutes=int(payload["limit_minutes"]),
            overage_allowed=bool(payload["overage_allowed"]),
            cost_per_minute=Decimal(payload["cost_per_minute"]),
            trial_expires_at=datetime.fromisoformat(trial) if trial else None,
            configured=bool(payload.get("configured", True)),
        )


@dataclass(frozen=True)
class UsageTotals:
    seconds: int
    cost_usd: Decimal
    count: int

    @property
    def minutes(self) -> int:
        return seconds_to_minutes(self.seconds)


@dataclass(frozen=True)
class RecordedUsage:
    id: int
    tenant_id: int
    provider_request_id: str
    audio_duration_seconds: int
    stt_model: str
    cost_usd: Decimal
    usage_date: datetime


class UsageStore(Protocol):
    async def get_plan_and_config(
        self, tenant_id: int
    ) -> tuple[PlanRecord | None, QuotaConfigRecord | None]: ...

    async def sum_usage(self, tenant_id: int, start: datetime, end: datetime) -> UsageTotals: ...

    async def list_usage(
        self, tenant_id: int, start: datetime, end: datetime
    ) -> list[tuple[datetime, int, Decimal]]: ...

    async def usage_exists(self, provider_request_id: str) -> bool: ...

    async def insert_usage(
        self,
        *,
        tenant_id: int,
        event: UsageEvent,
        model: str,
        cost_usd: Decimal,
        usage_date: datetime,
    ) -> RecordedUsage | None: ...


class SqlUsageStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_plan_and_config(
        self, tenant_id: int
    ) -> tuple[PlanRecord | None, QuotaConfigRecord | None]:
        config = await transcription_repo.get_config(self._session, tenant_id=tenant_id)
        if config is None:
            return None, None
        plan = await transcription_repo.get_plan(self._session, config.plan_id)
        return plan, config

    async def sum_usage(self, tenant_id: int, start: datetime, end: datetime) -> UsageTotals:
        seconds, cost, count = await transcription_repo.sum_usage_seconds(
            self._session, tenant_id=tenant_id, start=start, end=end
        )
        return UsageTotals(seconds=seconds, cost_usd=cost, count=count)

    async def list_usage(
        self, tenant_id: int, start: datetime, end: datetime
    ) -> list[tuple[datetime, int, Decimal]]:
        rows = await transcription_repo.list_usage_between(
            self._session, tenant_id=tenant_id, start=start, end=end
        )
        return [
            (row.usage_date, int(row.audio_duration_seconds), Decimal(str(row.cost_usd or 0)))
            for row in rows
        ]

    async def usage_exists(self, provider_request_id: str) -> bool:
        existing = await transcription_repo.get_usage_by_request_id(self._session, provider_request_id)
        return existing is not None

    async def insert_usage(
        self,
        *,
        tenant_id: int,
        event: UsageEvent,
        model: str,
        cost_usd: Decimal,
        usage_date: datetime,
    ) -> RecordedUsage | None:
        row = TranscriptionUsage(
            tenant_id=tenant_id,
            operation_id=event.operation_id,
            audio_duration_seconds=int(event.duration_seconds),
            stt_model=model,
            cost_usd=cost_usd,
            usage_date=usage_date,
            provider_request_id=event.provider_request_id,
        )
        # Savepoint keeps a concurrent duplicate from poisoning the outer transaction.
        try:
            async with self._session.begin_nested():
                self._session.add(row)
        except IntegrityError:
            return None
        return RecordedUsage(
            id=int(row.id),
            tenant_id=tenant_id,
            provider_request_id=event.provider_request_id,
            audio_duration_seconds=int(event.duration_seconds),
            stt_model=model,
            cost_usd=cost_usd,
            usage_date=usage_date,
        )


class QuotaTracker:
    def __init__(
        self,
        store: UsageStore,
        *,
        cache: TTLCache | None = None,
        settings: Settings | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        # Allow time injection for deterministic month-rollover tests.
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._time_provider = time_provider or _utc_now

    def _default_allowance(self) -> Allowance:
        return Allowance(
            plan_slug=DEFAULT_PLAN_SLUG,
            limit_minutes=int(self._settings.quota_default_monthly_minutes),
            overage_allowed=False,
            cost_per_minute=DEFAULT_COST_PER_MINUTE,
            configured=False,
        )

    async def allowance(self, tenant_id: int) -> Allowance:
        # Plan/config change slowly; a short TTL cache spares the lookup on hot paths.
        cache_key = f"quota:allowance:{tenant_id}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return Allowance.from_cache(cached)
        plan, config = await self._store.get_plan_and_config(tenant_id)
        if plan is None or config is None:
            if self._settings.quota_require_config:
                raise QuotaError(
                    ErrorCode.QUOTA_CONFIG_MISSING,
                    "Transcription quota is not configured for this tenant",
                )
            allowance = self._default_allowance()
        else:
            allowance = Allowance(
                plan_slug=plan.slug,
                limit_minutes=effective_limit(plan, config),
                overage_allowed=overage_permitted(plan, config),
                cost_per_minute=plan.cost_per_minute,
                trial_expires_at=trial_expires_at(plan, config),
            )
        if self._cache is not None:
            await self._cache.set(cache_key, allowance.to_cache(), ttl_s=self._settings.quota_cache_ttl_s)
        return allowance

    async def current_usage(self, tenant_id: int) -> UsageTotals:
        start = _month_start(self._time_provider())
        return await self._store.sum_usage(tenant_id, start, _shift_month(start, 1))

    async def usage_minutes(self, tenant_id: int) -> int:
        return (await self.current_usage(tenant_id)).minutes

    async def status(self, tenant: TenantContext) -> QuotaStatus:
        # Snapshot without enforcement, for dashboards and headers.
        allowance = await self.allowance(tenant.id)
        used = await self.usage_minutes(tenant.id)
        exceeded = used >= allowance.limit_minutes
        return QuotaStatus(
            tenant_id=tenant.id,
            used_minutes=used,
            limit_minutes=allowance.limit_minutes,
            remaining_minutes=max(allowance.limit_minutes - used, 0),
            overage_allowed=allowance.overage_allowed,
            warning=exceeded and allowance.overage_allowed,
            plan_slug=allowance.plan_slug,
        )

    async def check_quota(self, tenant: TenantContext) -> QuotaStatus:
        # Pre-flight only; concurrent callers may both pass before either records (soft limit).
        status = await self.status(tenant)
        if not status.exceeded:
            return status
        if status.overage_allowed:
            logger.warning(
                "quota_overage_warning tenant_id=%s used=%s limit=%s",
                tenant.id,
                status.used_minutes,
                status.limit_minutes,
            )
            return status
        logger.info(
            "quota_exceeded tenant_id=%s used=%s limit=%s",
            tenant.id,
            status.used_minutes,
            status.limit_minutes,
        )
        raise QuotaError(
            ErrorCode.QUOTA_EXCEEDED,
            "Monthly transcription quota exceeded",
            details={"used": status.used_minutes, "limit": status.limit_minutes, "remaining": 0},
        )

    async def record_usage(self, tenant: TenantContext, event: UsageEvent) -> RecordedUsage | None:
        # Idempotent per provider request id; redelivered callbacks return None.
        if not event.provider_request_id:
            raise ValueError("provider_request_id is required to record usage")
        if int(event.duration_seconds) < 0:
            raise ValueError("duration_seconds must be non-negative")
        if await self._store.usage_exists(event.provider_request_id):
            logger.info(
                "usage_duplicate_ignored tenant_id=%s provider_request_id=%s",
                tenant.id,
                event.provider_request_id,
            )
            return None
        estimate = estimate_cost(event.duration_seconds, event.model or self._settings.default_stt_model)
        usage_date = as_utc(event.occurred_at) or self._time_provider()
        recorded = await self._store.insert_usage(
            tenant_id=tenant.id,
            event=event,
            model=estimate.model,
            cost_usd=estimate.cost_usd,
            usage_date=usage_date,
        )
        if recorded is None:
            logger.info(
                "usage_duplicate_ignored tenant_id=%s provider_request_id=%s",
                tenant.id,
                event.provider_request_id,
            )
            return None
        logger.info(
            "usage_recorded tenant_id=%s provider_request_id=%s seconds=%s cost_usd=%s",
            tenant.id,
            event.provider_request_id,
            event.duration_seconds,
            estimate.cost_usd,
        )
        return recorded

    async def usage_history(self, tenant_id: int, months: int = 6) -> list[dict[str, Any]]:
        # Aggregated per calendar month, most recent first; empty months are omitted.
        months = max(int(months), 1)
        current = _month_start(self._time_provider())
        start = _shift_month(current, -(months - 1))
        rows = await self._store.list_usage(tenant_id, start, _shift_month(current, 1))
        buckets: dict[str, list[Any]] = {}
        for usage_date, seconds, cost in rows:
            month_key = as_utc(usage_date).strftime("%Y-%m")
            bucket = buckets.setdefault(month_key, [0, Decimal("0"), 0])
            bucket[0] += seconds
            bucket[1] += cost
            bucket[2] += 1
        return [
            {
                "month": month_key,
                "minutes_used": seconds_to_minutes(bucket[0]),
                "total_cost": str(quantize_usd(bucket[1])),
                "total_transcriptions": bucket[2],
            }
            for month_key, bucket in sorted(buckets.items(), reverse=True)
        ]

    async def overage_cost(self, tenant_id: int) -> Decimal:
        allowance = await self.allowance(tenant_id)
        used = await self.usage_minutes(tenant_id)
        return overage_cost(used, allowance.limit_minutes, allowance.cost_per_minute)
