from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.errors import AuthorizationError, ErrorCode
from tenantgate.domain.context import (
    Capability,
    Decision,
    EntitlementRecord,
    LicenseRecord,
    Principal,
    TenantContext,
    as_utc,
)
from tenantgate.persistence.repos import licensing as licensing_repo
from tenantgate.persistence.repos import transcription as transcription_repo
from tenantgate.services.audit import AccessAuditEntry, AuditSink
from tenantgate.services.auth.roles import effective_role, role_allows
from tenantgate.services.authz.capabilities import METERED_APPLICATION
from tenantgate.services.quota import trial_expires_at


logger = logging.getLogger(__name__)

LAYER_LICENSE = 1
LAYER_SEAT = 2
LAYER_ENTITLEMENT = 3
LAYER_ROLE = 4

ACTIVE_LICENSE_STATUS = "active"
EXPIRED_LICENSE_STATUS = "expired"

_DENIAL_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.LICENSE_MISSING: "Tenant has no license for this application",
    ErrorCode.LICENSE_EXPIRED: "Tenant license for this application has expired",
    ErrorCode.LICENSE_SUSPENDED: "Tenant license for this application is not active",
    ErrorCode.SEAT_LIMIT_REACHED: "No seats available for this application",
    ErrorCode.ENTITLEMENT_MISSING: "User has no access to this application",
    ErrorCode.ENTITLEMENT_EXPIRED: "User access to this application has expired",
    ErrorCode.ROLE_INSUFFICIENT: "Insufficient role for this operation",
}


class AccessStore(Protocol):
    # License/entitlement lookups; the engine never writes through this interface.
    async def get_license(self, tenant_id: int, application: str) -> LicenseRecord | None: ...

    async def get_trial_expiry(self, tenant_id: int) -> datetime | None: ...

    async def get_entitlement(
        self, tenant_id: int, user_id: int, application: str
    ) -> EntitlementRecord | None: ...


class SqlAccessStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_license(self, tenant_id: int, application: str) -> LicenseRecord | None:
        return await licensing_repo.get_license(
            self._session, tenant_id=tenant_id, application_slug=application
        )

    async def get_trial_expiry(self, tenant_id: int) -> datetime | None:
        config = await transcription_repo.get_config(self._session, tenant_id=tenant_id)
        if config is None:
            return None
        plan = await transcription_repo.get_plan(self._session, config.plan_id)
        if plan is None:
            return None
        return trial_expires_at(plan, config)

    async def get_entitlement(
        self, tenant_id: int, user_id: int, application: str
    ) -> EntitlementRecord | None:
        return await licensing_repo.get_entitlement(
            self._session,
            tenant_id=tenant_id,
            user_id=user_id,
            application_slug=application,
        )


def _expired(expires_at: datetime | None, now: datetime) -> bool:
    resolved = as_utc(expires_at)
    return resolved is not None and resolved <= now


class AccessDecisionEngine:
    def __init__(
        self,
        store: AccessStore,
        sink: AuditSink,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def authorize(
        self,
        tenant: TenantContext,
        principal: Principal,
        capability: Capability,
        *,
        request_id: str | None = None,
    ) -> Decision:
        # Layers run cheapest-first and stop at the first denial; every outcome is audited.
        now = self._clock()
        decision = await self._evaluate(tenant, principal, capability, now)
        await self._sink.append(
            AccessAuditEntry(
                tenant_id=tenant.id,
                user_id=principal.user_id,
                capability=capability.name,
                allowed=decision.allowed,
                reason=decision.reason,
                layer=decision.layer,
                occurred_at=now,
                request_id=request_id,
                metadata={"application": capability.application, "min_role": capability.min_role},
            )
        )
        log = logger.info if decision.allowed else logger.warning
        log(
            "access_decision tenant_id=%s user_id=%s capability=%s allowed=%s reason=%s layer=%s",
            tenant.id,
            principal.user_id,
            capability.name,
            decision.allowed,
            decision.reason,
            decision.layer,
        )
        return decision

    async def require(
        self,
        tenant: TenantContext,
        principal: Principal,
        capability: Capability,
        *,
        request_id: str | None = None,
    ) -> Decision:
        decision = await self.authorize(tenant, principal, capability, request_id=request_id)
        if not decision.allowed:
            code = ErrorCode(decision.reason)
            raise AuthorizationError(
                code,
                _DENIAL_MESSAGES.get(code, "Access denied"),
                details={"capability": capability.name, "layer": decision.layer},
            )
        return decision

    async def _evaluate(
        self,
        tenant: TenantContext,
        principal: Principal,
        capability: Capability,
        now: datetime,
    ) -> Decision:
        name = capability.name

        license_record = await self._store.get_license(tenant.id, capability.application)
        if license_record is None:
            return Decision.deny(ErrorCode.LICENSE_MISSING, LAYER_LICENSE, name)
        if license_record.status == EXPIRED_LICENSE_STATUS:
            return Decision.deny(ErrorCode.LICENSE_EXPIRED, LAYER_LICENSE, name)
        if license_record.status != ACTIVE_LICENSE_STATUS:
            return Decision.deny(ErrorCode.LICENSE_SUSPENDED, LAYER_LICENSE, name)
        if _expired(license_record.expires_at, now):
            return Decision.deny(ErrorCode.LICENSE_EXPIRED, LAYER_LICENSE, name)
        if capability.application == METERED_APPLICATION:
            # Trial expiry is computed from the plan, not read from a swept status column.
            if _expired(await self._store.get_trial_expiry(tenant.id), now):
                return Decision.deny(ErrorCode.LICENSE_EXPIRED, LAYER_LICENSE, name)

        if capability.grants_seat and license_record.seats_used >= license_record.seats_purchased:
            return Decision.deny(ErrorCode.SEAT_LIMIT_REACHED, LAYER_SEAT, name)

        entitlement = await self._store.get_entitlement(
            tenant.id, principal.user_id, capability.application
        )
        if entitlement is None:
            return Decision.deny(ErrorCode.ENTITLEMENT_MISSING, LAYER_ENTITLEMENT, name)
        if not entitlement.active or _expired(entitlement.expires_at, now):
            return Decision.deny(ErrorCode.ENTITLEMENT_EXPIRED, LAYER_ENTITLEMENT, name)

        role = effective_role(principal.role, entitlement.role_in_app)
        if not role_allows(role=role, minimum_role=capability.min_role):
            return Decision.deny(ErrorCode.ROLE_INSUFFICIENT, LAYER_ROLE, name)

        return Decision.allow(name)
