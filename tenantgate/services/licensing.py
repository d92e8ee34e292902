from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.errors import SeatGrantError
from tenantgate.domain.models import UserApplicationAccess
from tenantgate.persistence.repos import licensing as licensing_repo
from tenantgate.services.auth.roles import normalize_role


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def grant_seat(
    session: AsyncSession,
    *,
    tenant_id: int,
    application_id: int,
    user_id: int,
    role_in_app: str = "operations",
) -> UserApplicationAccess:
    # License row is locked so concurrent grants cannot oversubscribe seats.
    role = normalize_role(role_in_app)
    license_row = await licensing_repo.get_license_for_update(
        session, tenant_id=tenant_id, application_id=application_id
    )
    if license_row is None or license_row.status != "active":
        raise SeatGrantError("Tenant has no active license for this application")
    entitlement = await licensing_repo.get_entitlement_row(
        session, tenant_id=tenant_id, user_id=user_id, application_id=application_id
    )
    if entitlement is not None and entitlement.active:
        # Already holds a seat; regranting renews it in place.
        entitlement.role_in_app = role
        entitlement.expires_at = None
        await session.flush()
        return entitlement
    if license_row.seats_used >= license_row.seats_purchased:
        raise SeatGrantError("No seats available for this application")
    if entitlement is None:
        entitlement = UserApplicationAccess(
            tenant_id=tenant_id,
            user_id=user_id,
            application_id=application_id,
            role_in_app=role,
            active=True,
        )
        session.add(entitlement)
    else:
        entitlement.active = True
        entitlement.role_in_app = role
        entitlement.expires_at = None
    license_row.seats_used = license_row.seats_used + 1
    await session.flush()
    logger.info(
        "seat_granted tenant_id=%s application_id=%s user_id=%s seats_used=%s",
        tenant_id,
        application_id,
        user_id,
        license_row.seats_used,
    )
    return entitlement


async def revoke_seat(
    session: AsyncSession,
    *,
    tenant_id: int,
    application_id: int,
    user_id: int,
) -> bool:
    license_row = await licensing_repo.get_license_for_update(
        session, tenant_id=tenant_id, application_id=application_id
    )
    entitlement = await licensing_repo.get_entitlement_row(
        session, tenant_id=tenant_id, user_id=user_id, application_id=application_id
    )
    if license_row is None or entitlement is None or not entitlement.active:
        return False
    entitlement.active = False
    license_row.seats_used = max(license_row.seats_used - 1, 0)
    await session.flush()
    logger.info(
        "seat_revoked tenant_id=%s application_id=%s user_id=%s seats_used=%s",
        tenant_id,
        application_id,
        user_id,
        license_row.seats_used,
    )
    return True


async def expire_licenses(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Periodic correction of stored status; access checks already derive expiry on read.
    resolved_now = now or _utc_now()
    expired = await licensing_repo.expire_licenses(session, now=resolved_now)
    await session.commit()
    logger.info("licenses_expired count=%s", expired)
    return expired
