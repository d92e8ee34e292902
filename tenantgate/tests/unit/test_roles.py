from __future__ import annotations

import pytest

from tenantgate.services.auth.roles import effective_role, normalize_role, role_allows


def test_role_ordering() -> None:
    assert role_allows(role="admin", minimum_role="manager")
    assert role_allows(role="Manager", minimum_role="manager")
    assert not role_allows(role="operations", minimum_role="manager")
    assert not role_allows(role=None, minimum_role="operations")
    assert not role_allows(role="auditor", minimum_role="operations")


def test_effective_role_takes_the_stronger_role() -> None:
    assert effective_role("operations", "admin") == "admin"
    assert effective_role("admin", "operations") == "admin"
    assert effective_role(None, "manager") == "manager"
    assert effective_role("manager", None) == "manager"


def test_normalize_role_rejects_unknown_roles() -> None:
    assert normalize_role(" ADMIN ") == "admin"
    with pytest.raises(ValueError):
        normalize_role("owner")
