from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tenantgate.core.config import Settings
from tenantgate.core.errors import ErrorCode, QuotaError
from tenantgate.domain.context import PlanRecord, QuotaConfigRecord, UsageEvent
from tenantgate.services.cache import MemoryTTLCache
from tenantgate.services.quota import (
    QuotaTracker,
    effective_limit,
    overage_permitted,
    seconds_to_minutes,
    trial_expires_at,
)
from tenantgate.tests.utils.fakes import FakeUsageStore, tenant_context


NOW = datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)


def _plan(**overrides) -> PlanRecord:
    values = dict(
        id=1,
        slug="starter",
        monthly_minutes_limit=2400,
        allows_custom_limits=False,
        allows_overage=False,
        cost_per_minute=Decimal("0.0043"),
    )
    values.update(overrides)
    return PlanRecord(**values)


def _config(**overrides) -> QuotaConfigRecord:
    values = dict(
        tenant_id=10,
        plan_id=1,
        custom_monthly_limit=None,
        overage_allowed=False,
        plan_activated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return QuotaConfigRecord(**values)


def _tracker(store: FakeUsageStore, **kwargs) -> QuotaTracker:
    kwargs.setdefault("settings", Settings())
    kwargs.setdefault("time_provider", lambda: NOW)
    return QuotaTracker(store, **kwargs)


def test_custom_limit_requires_plan_support() -> None:
    assert effective_limit(_plan(), _config(custom_monthly_limit=5000)) == 2400
    assert effective_limit(_plan(allows_custom_limits=True), _config(custom_monthly_limit=5000)) == 5000
    assert effective_limit(_plan(allows_custom_limits=True), _config()) == 2400


def test_overage_from_plan_or_config() -> None:
    assert not overage_permitted(_plan(), _config())
    assert overage_permitted(_plan(allows_overage=True), _config())
    assert overage_permitted(_plan(), _config(overage_allowed=True))


def test_trial_expiry_is_derived_from_activation() -> None:
    trial = _plan(is_trial=True, trial_days=14)
    activated = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert trial_expires_at(trial, _config(plan_activated_at=activated)) == activated + timedelta(days=14)
    assert trial_expires_at(_plan(), _config()) is None
    assert trial_expires_at(trial, None) is None


@pytest.mark.parametrize(("seconds", "minutes"), [(0, 0), (1, 1), (60, 1), (61, 2), (3600, 60), (-5, 0)])
def test_seconds_round_up_to_whole_minutes(seconds: int, minutes: int) -> None:
    assert seconds_to_minutes(seconds) == minutes


@pytest.mark.asyncio
async def test_usage_sums_seconds_before_rounding() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    store.add(10, "r1", 30, NOW - timedelta(days=1))
    store.add(10, "r2", 31, NOW - timedelta(days=2))
    store.add(11, "other-tenant", 600, NOW)

    assert await _tracker(store).usage_minutes(10) == 2


@pytest.mark.asyncio
async def test_usage_counts_only_current_calendar_month() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    store.add(10, "feb", 6000, datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc))
    store.add(10, "mar", 120, datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc))

    march = _tracker(store)
    april = _tracker(store, time_provider=lambda: datetime(2026, 4, 1, 0, 0, 1, tzinfo=timezone.utc))

    assert await march.usage_minutes(10) == 2
    assert await april.usage_minutes(10) == 0


@pytest.mark.asyncio
async def test_check_quota_raises_when_exhausted_without_overage() -> None:
    store = FakeUsageStore(plan=_plan(monthly_minutes_limit=10), config=_config())
    store.add(10, "r1", 600, NOW)

    with pytest.raises(QuotaError) as exc_info:
        await _tracker(store).check_quota(tenant_context(10))

    assert exc_info.value.code == ErrorCode.QUOTA_EXCEEDED
    assert exc_info.value.status_code == 429
    assert exc_info.value.details == {"used": 10, "limit": 10, "remaining": 0}


@pytest.mark.asyncio
async def test_check_quota_warns_when_overage_allowed() -> None:
    store = FakeUsageStore(plan=_plan(monthly_minutes_limit=10), config=_config(overage_allowed=True))
    store.add(10, "r1", 900, NOW)
    tracker = _tracker(store)

    status = await tracker.check_quota(tenant_context(10))

    assert status.warning
    assert status.used_minutes == 15
    assert status.remaining_minutes == 0
    assert await tracker.overage_cost(10) == Decimal("0.0215")


@pytest.mark.asyncio
async def test_check_quota_under_limit_is_quiet() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    store.add(10, "r1", 61, NOW)

    status = await _tracker(store).check_quota(tenant_context(10))

    assert status.as_dict() == {
        "used": 2,
        "limit": 2400,
        "remaining": 2398,
        "overage_allowed": False,
        "warning": False,
        "plan": "starter",
    }


@pytest.mark.asyncio
async def test_missing_config_uses_default_or_fails_closed() -> None:
    store = FakeUsageStore()

    status = await _tracker(store).status(tenant_context(10))
    assert status.limit_minutes == 60
    assert status.plan_slug == "default"

    strict = _tracker(store, settings=Settings(quota_require_config=True))
    with pytest.raises(QuotaError) as exc_info:
        await strict.check_quota(tenant_context(10))
    assert exc_info.value.code == ErrorCode.QUOTA_CONFIG_MISSING
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_allowance_is_cached_between_checks() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    tracker = _tracker(store, cache=MemoryTTLCache())

    first = await tracker.allowance(10)
    store.plan = _plan(monthly_minutes_limit=10)
    second = await tracker.allowance(10)

    assert first == second
    assert first.limit_minutes == 2400
    assert store.calls["get_plan_and_config"] == 1


@pytest.mark.asyncio
async def test_cached_allowance_expires() -> None:
    clock = {"now": 1000.0}
    cache = MemoryTTLCache(time_provider=lambda: clock["now"])
    store = FakeUsageStore(plan=_plan(), config=_config())
    tracker = _tracker(store, cache=cache, settings=Settings(quota_cache_ttl_s=30))

    await tracker.allowance(10)
    store.plan = _plan(monthly_minutes_limit=10)
    clock["now"] += 31

    assert (await tracker.allowance(10)).limit_minutes == 10
    assert store.calls["get_plan_and_config"] == 2


@pytest.mark.asyncio
async def test_record_usage_is_idempotent_per_provider_request() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    tracker = _tracker(store)
    event = UsageEvent(provider_request_id="proj.req-1", duration_seconds=90, model="nova-3")

    first = await tracker.record_usage(tenant_context(10), event)
    second = await tracker.record_usage(tenant_context(10), event)

    assert first is not None
    assert first.cost_usd == Decimal("0.0065")
    assert first.usage_date == NOW
    assert second is None
    assert len(store.rows) == 1
    assert store.calls["insert_usage"] == 1


@pytest.mark.asyncio
async def test_record_usage_rejects_invalid_events() -> None:
    tracker = _tracker(FakeUsageStore())
    with pytest.raises(ValueError):
        await tracker.record_usage(tenant_context(10), UsageEvent(provider_request_id="", duration_seconds=5))
    with pytest.raises(ValueError):
        await tracker.record_usage(tenant_context(10), UsageEvent(provider_request_id="r", duration_seconds=-1))


@pytest.mark.asyncio
async def test_usage_history_groups_by_month() -> None:
    store = FakeUsageStore(plan=_plan(), config=_config())
    store.add(10, "a", 61, datetime(2026, 3, 2, tzinfo=timezone.utc))
    store.add(10, "b", 59, datetime(2026, 3, 3, tzinfo=timezone.utc))
    store.add(10, "c", 300, datetime(2026, 1, 20, tzinfo=timezone.utc))
    store.add(10, "too-old", 300, datetime(2025, 12, 31, tzinfo=timezone.utc))

    history = await _tracker(store).usage_history(10, months=3)

    assert [row["month"] for row in history] == ["2026-03", "2026-01"]
    assert history[0]["minutes_used"] == 2
    assert history[0]["total_transcriptions"] == 2
    assert history[1]["minutes_used"] == 5
