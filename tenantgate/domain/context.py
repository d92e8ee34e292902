from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from tenantgate.core.errors import ErrorCode


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; treat stored values as UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TenantContext:
    # Built once per request by the resolver; never persisted.
    id: int
    slug: str
    schema_name: str
    timezone: str
    status: str


@dataclass(frozen=True)
class Principal:
    # Authoritative DB fields merged with low-churn token hints.
    user_id: int
    tenant_id: int | None
    email: str
    role: str
    platform_role: str | None = None
    allowed_apps: tuple[str, ...] = ()
    user_type: str | None = None

    @property
    def is_platform_admin(self) -> bool:
        return self.tenant_id is None and self.platform_role is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "role": self.role,
            "platform_role": self.platform_role,
            "allowed_apps": list(self.allowed_apps),
            "user_type": self.user_type,
        }


@dataclass(frozen=True)
class Capability:
    # Named action on one application, with its minimum role and seat semantics.
    name: str
    application: str
    min_role: str = "operations"
    grants_seat: bool = False


ALLOWED_REASON = "ALLOWED"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    layer: int
    capability: str | None = None

    @classmethod
    def allow(cls, capability: str | None = None) -> Decision:
        return cls(allowed=True, reason=ALLOWED_REASON, layer=0, capability=capability)

    @classmethod
    def deny(cls, code: ErrorCode, layer: int, capability: str | None = None) -> Decision:
        return cls(allowed=False, reason=code.value, layer=layer, capability=capability)

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "layer": self.layer,
            "capability": self.capability,
        }


@dataclass(frozen=True)
class LicenseRecord:
    tenant_id: int
    application_id: int
    status: str
    seats_purchased: int
    seats_used: int
    expires_at: datetime | None = None
    trial_used: bool = False


@dataclass(frozen=True)
class EntitlementRecord:
    tenant_id: int
    user_id: int
    application_id: int
    role_in_app: str
    active: bool
    expires_at: datetime | None = None


@dataclass(frozen=True)
class PlanRecord:
    id: int
    slug: str
    monthly_minutes_limit: int
    allows_custom_limits: bool
    allows_overage: bool
    cost_per_minute: Decimal
    is_trial: bool = False
    trial_days: int | None = None


@dataclass(frozen=True)
class QuotaConfigRecord:
    tenant_id: int
    plan_id: int
    custom_monthly_limit: int | None
    overage_allowed: bool
    plan_activated_at: datetime | None


@dataclass(frozen=True)
class QuotaStatus:
    tenant_id: int
    used_minutes: int
    limit_minutes: int
    remaining_minutes: int
    overage_allowed: bool
    warning: bool = False
    plan_slug: str | None = None

    @property
    def exceeded(self) -> bool:
        return self.used_minutes >= self.limit_minutes

    def as_dict(self) -> dict[str, Any]:
        return {
            "used": self.used_minutes,
            "limit": self.limit_minutes,
            "remaining": self.remaining_minutes,
            "overage_allowed": self.overage_allowed,
            "warning": self.warning,
            "plan": self.plan_slug,
        }


@dataclass(frozen=True)
class UsageEvent:
    # One completed metered operation as reported by the speech provider.
    provider_request_id: str
    duration_seconds: int
    operation_id: str | None = None
    model: str | None = None
    occurred_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
