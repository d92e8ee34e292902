from __future__ import annotations


ROLE_ORDER: dict[str, int] = {
    "operations": 1,
    "manager": 2,
    "admin": 3,
}


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_level(role: str | None) -> int:
    if not role:
        return 0
    return ROLE_ORDER.get(role.strip().lower(), 0)


def role_allows(*, role: str | None, minimum_role: str) -> bool:
    # Compare roles using numeric ordering for least-privilege enforcement.
    return role_level(role) >= ROLE_ORDER.get(minimum_role, 0)


def effective_role(tenant_role: str | None, role_in_app: str | None) -> str | None:
    # The stronger of the tenant-wide role and the per-application role wins.
    if role_level(role_in_app) >= role_level(tenant_role):
        return role_in_app or tenant_role
    return tenant_role
