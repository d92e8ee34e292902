from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface repository calls that would run without a canonical tenant id.
    message: str


def require_tenant_id(tenant_id: int | None) -> int:
    # Only canonical numeric ids reach the repositories; slugs never do.
    if isinstance(tenant_id, bool) or not isinstance(tenant_id, int) or tenant_id <= 0:
        raise TenantPredicateError("Tenant predicate requires a canonical numeric tenant_id")
    return tenant_id


def tenant_predicate(model, tenant_id: int | None) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    return model.tenant_id == require_tenant_id(tenant_id)
